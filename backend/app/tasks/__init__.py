
# 使 Celery 自动发现任务模块
from app.tasks import credentials  # noqa: F401
