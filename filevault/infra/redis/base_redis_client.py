# 文件路径: filevault/infra/redis/base_redis_client.py

from typing import Dict, List as PyList

from redis.asyncio.client import Redis as AsyncRedis, Pipeline


class BaseRedisClient:
    """
    Redis 命令的薄封装，只暴露缓存层用到的 Hash / Sorted Set / Pipeline 命令。
    它不管理连接，而是接收一个已经建立好的 client 实例。
    """

    def __init__(self, client: AsyncRedis):
        self._client = client

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    # ==================== Pipeline ====================
    # 写入 (hset / expire / zadd / zremrangebyrank) 都通过 pipeline 批量提交
    def pipeline(self, transaction: bool = True) -> Pipeline:
        return self._client.pipeline(transaction=transaction)

    # ==================== Hash 支持 ====================
    async def hgetall(self, name: str) -> Dict[str, str]:
        return await self._client.hgetall(name)

    # ==================== Sorted Set 支持 ====================
    async def zrevrange(self, name: str, start: int = 0, end: int = -1) -> PyList[str]:
        return await self._client.zrevrange(name, start, end)
