# 文件路径: filevault/infra/redis/redis_factory.py

from typing import Optional

import redis.asyncio as aioredis
from loguru import logger

from filevault.config.config_schema import FileCacheConfig


class RedisFactory:
    """
    管理文件元数据缓存使用的 Redis 连接。
    在应用启动时创建一次，关闭时统一释放。
    """
    def __init__(self):
        self._client: Optional[aioredis.Redis] = None

    async def init_client(self, config: FileCacheConfig) -> Optional[aioredis.Redis]:
        """
        根据配置创建 Redis 客户端并 PING 一次。
        未启用或连接失败时返回 None（缓存层随之降级为空实现），不会抛出异常。
        """
        if not config.enabled:
            logger.info("[RedisFactory] Redis cache disabled")
            return None

        try:
            pool = aioredis.ConnectionPool.from_url(
                config.url,
                max_connections=config.max_connections,
                socket_timeout=config.socket_timeout,
                socket_connect_timeout=config.socket_connect_timeout,
                retry_on_timeout=True,
                decode_responses=True,
            )
            client = aioredis.Redis(connection_pool=pool)
            await client.ping()
        except Exception as e:
            logger.warning(f"❌ [RedisFactory] Redis not available at {config.url}: {e}")
            return None

        self._client = client
        logger.info(f"✅ [RedisFactory] Connected to Redis at {config.url}")
        return client

    async def close_client(self):
        if self._client is None:
            return
        await self._client.aclose()
        await self._client.connection_pool.disconnect()
        self._client = None
        logger.info("🔌 Redis connection closed.")
