"""
Service Hub 健康检查命令行入口模块。

提供 CLI 命令：
- check：手动执行一轮检查（适合外部 cron 调用），完成即退出码 0，启动失败退出码 1；
- run：前台定时循环执行检查；
- init-db：创建数据表。
"""
import asyncio
import logging
import sys

import click

from servicehub import __version__
from servicehub.core.config import settings
from servicehub.core.database import create_engine, create_tables
from servicehub.core.exceptions import CycleInProgressError, CycleSetupError
from servicehub.tasks.health_cycle import CycleTrigger, build_orchestrator, run_until_signalled


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
def cli(verbose):
    """Service Hub - 服务健康检查与通知。"""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command()
def check():
    """手动执行一轮健康检查。"""
    orchestrator = build_orchestrator(settings)
    try:
        report = asyncio.run(orchestrator.run_cycle(CycleTrigger.MANUAL))
    except CycleInProgressError as e:
        click.echo(f"Skipped: {e.message}", err=True)
        sys.exit(0)
    except CycleSetupError as e:
        click.echo(f"Error: {e.message}: {e.detail}", err=True)
        sys.exit(1)
    except Exception as e:
        logging.getLogger("servicehub").exception("Health check cycle crashed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    s = report.summary
    click.echo(f"Health check completed: {s.successful} successful, {s.failed} failed, {report.notified} notified")


@cli.command()
@click.option("--interval", "-i", type=int, default=None, help="Check interval in seconds")
def run(interval):
    """以前台模式定时执行检查，Ctrl+C / SIGTERM 结束。"""
    interval = interval or settings.check_interval
    orchestrator = build_orchestrator(settings)
    asyncio.run(run_until_signalled(orchestrator, interval))


@cli.command("init-db")
def init_db():
    """创建所有数据表。"""
    async def _create():
        engine = create_engine(settings.database_url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    try:
        asyncio.run(_create())
    except Exception as e:
        click.echo(f"❌ Database init failed: {e}", err=True)
        sys.exit(1)
    click.echo("✅ Tables created")


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
