import asyncio
from dataclasses import asdict

from loguru import logger

from app.core.celery_app import CREDENTIAL_REFRESH_TASK, celery_app
from app.core.config import get_settings
from app.core.container import build_container


async def _refresh_once() -> dict[str, int]:
    # worker 进程内每次任务独立装配，用完即释放连接
    container = build_container(get_settings())
    try:
        summary = await container.credentials.refresh_expiring_credentials()
        return asdict(summary)
    finally:
        await container.close()


@celery_app.task(name=CREDENTIAL_REFRESH_TASK)
def refresh_expiring_credentials() -> dict[str, int] | str:
    """
    周期刷新即将过期的凭证（CREDENTIAL_REFRESH_MODE=celery）
    """
    logger.info("Running credential refresh task...")
    try:
        return asyncio.run(_refresh_once())
    except Exception as exc:
        logger.error(f"Credential refresh task failed: {exc}")
        return f"Failed: {exc}"
