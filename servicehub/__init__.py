"""Service Hub 服务健康检查核心。"""
__version__ = "1.0.0"
