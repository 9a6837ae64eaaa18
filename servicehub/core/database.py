"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式提供引擎和会话工厂的创建函数，以及 ORM 基类。
不持有进程级全局连接：调用方（检查轮次）负责创建、使用并释放。

Provides factory functions for the SQLAlchemy 2.0 async engine and session maker,
plus the ORM declarative base. No process-wide connection is held here: callers
(the check cycle) create, use and dispose of them.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    ORM 模型基类 (ORM Model Base Class)

    所有数据模型都继承此类。
    All data models inherit from this class.
    """
    pass


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """创建异步数据库引擎 (Create Async Database Engine)。"""
    return create_async_engine(url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    创建异步会话工厂 (Create Async Session Factory)

    配置会话不在提交后过期，保持对象状态以便后续访问（例如写入后立即发布状态记录）。
    Objects are not expired on commit so freshly inserted records can be published right away.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """根据模型定义创建所有表（用于初始化和测试）。"""
    # 导入模型以确保表注册 (Import models to ensure table registration)
    import servicehub.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def open_session(url: str) -> AsyncIterator[AsyncSession]:
    """
    打开一个轮次范围的数据库会话 (Open a Cycle-scoped Database Session)

    创建引擎和会话，退出时关闭会话并释放引擎连接池，所有退出路径都会执行释放。
    Creates an engine and session; both are released on every exit path.
    """
    engine = create_engine(url)
    try:
        async with create_session_factory(engine)() as session:
            yield session
    finally:
        await engine.dispose()
