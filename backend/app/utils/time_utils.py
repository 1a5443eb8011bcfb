from datetime import UTC, datetime, timedelta


class Datetime:
    """
    统一的时间处理工具类
    核心原则：
    1. 系统内部（数据库、逻辑处理）统一使用 UTC 时区
    2. 所有 datetime 对象必须带有时区信息 (Timezone-aware)
    """

    @staticmethod
    def now() -> datetime:
        """
        获取当前 UTC 时间（带时区信息）
        替代 datetime.now() 或 datetime.utcnow()
        """
        return datetime.now(UTC)

    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """naive 时间视为 UTC，aware 时间转换到 UTC"""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)

    @staticmethod
    def after(seconds: float, base: datetime | None = None) -> datetime:
        """返回 base（默认当前时间）之后若干秒的 UTC 时间"""
        return (base or Datetime.now()) + timedelta(seconds=seconds)
