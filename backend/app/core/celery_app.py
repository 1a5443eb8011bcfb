from __future__ import annotations

from celery import Celery
from celery.signals import beat_init, worker_process_init

from app.core.config import Settings, get_settings
from app.core.logging import setup_logging

CREDENTIAL_REFRESH_TASK = "app.tasks.credentials.refresh_expiring_credentials"


def build_beat_schedule(settings: Settings) -> dict:
    """CREDENTIAL_REFRESH_MODE=celery 时由 beat 负责周期刷新，其余模式不注册"""
    if settings.CREDENTIAL_REFRESH_MODE != "celery":
        return {}
    interval = settings.CREDENTIAL_REFRESH_INTERVAL_SECONDS
    return {
        "refresh-expiring-credentials": {
            "task": CREDENTIAL_REFRESH_TASK,
            "schedule": interval,
            # 过期未执行的任务直接丢弃，避免堆积后集中刷新
            "options": {"expires": max(1.0, interval - 60)},
        },
    }


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "xauto_relay",
        broker=settings.CELERY_BROKER_URL or None,
        backend=settings.CELERY_RESULT_BACKEND or None,
    )
    app.conf.update(
        task_default_queue=settings.CELERY_TASK_DEFAULT_QUEUE,
        timezone=settings.CELERY_TIMEZONE,
        enable_utc=True,
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        # 定时任务配置
        beat_schedule=build_beat_schedule(settings),
        task_routes={
            "app.tasks.credentials.*": {"queue": "internal"},
            "*": {"queue": "default"},
        },
    )
    return app


celery_app = create_celery_app(get_settings())

# 自动发现 app.tasks 下的任务
celery_app.autodiscover_tasks(["app"])


@worker_process_init.connect
def init_worker_logging(**kwargs):
    """
    在 Celery worker 进程初始化时配置应用日志。
    """
    setup_logging(get_settings())


@beat_init.connect
def init_beat_logging(**kwargs):
    """
    在 Celery beat 进程初始化时配置应用日志。
    """
    setup_logging(get_settings())
