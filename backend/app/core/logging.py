import logging
import sys

from loguru import logger

from app.core.config import Settings


class InterceptHandler(logging.Handler):
    """
    拦截标准库 logging 消息并转发到 Loguru
    """
    def emit(self, record):
        # 获取对应的 Loguru level
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 获取调用栈深度
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(settings: Settings):
    """
    配置 Loguru 日志
    """
    # 移除 Loguru 默认的 handler
    logger.remove()

    # 1. 输出到控制台
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        serialize=settings.LOG_JSON_FORMAT,
        enqueue=settings.LOG_ASYNC,
        backtrace=True,
        diagnose=settings.DEBUG,  # diagnose 会打印局部变量，生产环境可能泄露令牌
    )

    # 2. 输出到文件 (如果有路径配置)
    if settings.LOG_FILE_PATH:
        logger.add(
            settings.LOG_FILE_PATH,
            rotation=settings.LOG_ROTATION,
            retention=settings.LOG_RETENTION,
            level=settings.LOG_LEVEL,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            encoding="utf-8",
            enqueue=settings.LOG_ASYNC,
            compression="zip",
        )

    # 3. 拦截标准库 logging (Uvicorn, SQLAlchemy, httpx, Celery 等)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logging.getLogger("uvicorn.access").handlers = [InterceptHandler()]
    logging.getLogger("uvicorn.error").handlers = [InterceptHandler()]

    # httpx 在 INFO 级别会打印完整请求 URL（含 code 等参数）
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    logging.getLogger("root").setLevel(settings.LOG_LEVEL)

    return logger
