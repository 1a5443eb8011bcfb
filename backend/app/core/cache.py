import pickle
from typing import Any

from redis.asyncio import Redis, from_url

from app.core.logging import logger


class CacheService:
    """
    Redis 缓存服务

    REDIS_URL 为空时不建立连接，所有操作返回安全默认值。
    """
    def __init__(self, url: str = "", prefix: str = "", encoding: str = "utf-8"):
        self._url = url
        self._prefix = prefix
        self._encoding = encoding
        self._redis: Redis | None = None

    def init(self) -> None:
        """初始化 Redis 连接池"""
        if self._url:
            self._redis = from_url(
                self._url,
                encoding=self._encoding,
                decode_responses=False  # 手动处理序列化，支持对象缓存
            )
            logger.info(f"Redis initialized at {self._url}")
        else:
            logger.warning("REDIS_URL not set, cache will be disabled")

    async def close(self) -> None:
        """关闭 Redis 连接"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @property
    def redis(self) -> Redis:
        if not self._redis:
            raise RuntimeError("CacheService not initialized. Call init() first.")
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        """获取缓存值 (自动反序列化)"""
        if not self._redis: return None
        try:
            data = await self._redis.get(self._make_key(key))
            if data:
                return pickle.loads(data)
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        nx: bool | None = None,
    ) -> bool:
        """设置缓存值 (自动序列化)，ttl 单位为秒"""
        if not self._redis: return False
        try:
            data = pickle.dumps(value)
            kwargs: dict[str, Any] = {"ex": ttl}
            if nx is not None:
                kwargs["nx"] = nx
            return bool(await self._redis.set(self._make_key(key), data, **kwargs))
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def pop(self, key: str) -> Any | None:
        """原子地读取并删除缓存值（GETDEL），用于一次性令牌"""
        if not self._redis: return None
        try:
            data = await self._redis.getdel(self._make_key(key))
            if data:
                return pickle.loads(data)
        except Exception as e:
            logger.error(f"Cache pop error for key {key}: {e}")
        return None

    async def exists(self, key: str) -> bool:
        if not self._redis: return False
        try:
            return bool(await self._redis.exists(self._make_key(key)))
        except Exception as e:
            logger.error(f"Cache exists error for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """删除缓存"""
        if not self._redis: return False
        try:
            await self._redis.delete(self._make_key(key))
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            return False

    async def count_prefix(self, prefix: str) -> int:
        """统计指定前缀下的 key 数量（仅用于监控）"""
        if not self._redis: return 0
        try:
            keys = await self._redis.keys(self._make_key(f"{prefix}*"))
            return len(keys)
        except Exception as e:
            logger.error(f"Cache count error for prefix {prefix}: {e}")
            return 0
