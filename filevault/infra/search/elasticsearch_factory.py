# 文件路径: filevault/infra/search/elasticsearch_factory.py

from typing import Optional

from elasticsearch import AsyncElasticsearch
from loguru import logger

from filevault.config.config_schema import FileSearchConfig


class ElasticsearchFactory:
    """
    管理检索层使用的 Elasticsearch 客户端，与 RedisFactory 的生命周期一致。
    """
    def __init__(self):
        self._client: Optional[AsyncElasticsearch] = None

    async def init_client(self, config: FileSearchConfig) -> Optional[AsyncElasticsearch]:
        """
        未启用、或节点 ping 不通时返回 None，检索层随之降级为空实现。
        """
        if not config.enabled:
            logger.info("[ElasticsearchFactory] Elasticsearch disabled")
            return None

        client = AsyncElasticsearch(config.url, request_timeout=config.request_timeout)
        try:
            reachable = await client.ping()
        except Exception as e:
            logger.warning(f"❌ [ElasticsearchFactory] Elasticsearch ping failed at {config.url}: {e}")
            reachable = False

        if not reachable:
            logger.warning(f"❌ [ElasticsearchFactory] Elasticsearch not available at {config.url}")
            await client.close()
            return None

        self._client = client
        logger.info(f"✅ [ElasticsearchFactory] Connected to Elasticsearch at {config.url}")
        return client

    async def close_client(self):
        if self._client is None:
            return
        await self._client.close()
        self._client = None
        logger.info("🔌 Elasticsearch connection closed.")
