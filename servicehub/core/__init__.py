"""
核心模块包 (Core Module Package)

Service Hub 健康检查核心的基础组件，包含配置管理、数据库连接、Redis 连接和异常定义。

Foundational components for the Service Hub health-check core, including
configuration management, database connections, Redis connections and exceptions.
"""
