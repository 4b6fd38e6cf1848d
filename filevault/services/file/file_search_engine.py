from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from elasticsearch import AsyncElasticsearch, NotFoundError
from elasticsearch.helpers import async_bulk

from filevault.config.config_schema import FileSearchConfig
from filevault.infra.search.elasticsearch_factory import ElasticsearchFactory
from filevault.schemas.file.file_record_schemas import (
    FacetBucket,
    FileFacets,
    FileRecordRead,
    FileSearchParams,
    FileSearchResult,
    METADATA_SCHEMA_VERSION,
    PROMOTED_METADATA_KEYS,
)
from filevault.services._base_service import BaseService


# 在索引中为 text 类型、需要用 keyword 子字段排序的字段
TEXT_SORT_FIELDS = {"name", "path"}

# 聚合名称 -> (字段, 返回的桶数)
FACET_AGGREGATIONS = {
    "extensions": ("extension", 50),
    "projects": ("metadata.project", 100),
    "statuses": ("metadata.status", 20),
    "tags": ("tags", 50),
}

SUGGESTION_NAME = "file_suggest"


def build_index_body(config: FileSearchConfig) -> Dict[str, Any]:
    """索引的 settings 与 mappings。metadata 只索引 PROMOTED_METADATA_KEYS 中声明的字段。"""
    return {
        "settings": {
            "number_of_shards": config.number_of_shards,
            "number_of_replicas": config.number_of_replicas,
            "analysis": {
                "analyzer": {
                    "file_analyzer": {
                        "type": "custom",
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding"],
                    }
                }
            },
        },
        "mappings": {
            "_meta": {"metadata_schema_version": METADATA_SCHEMA_VERSION},
            "properties": {
                "id": {"type": "keyword"},
                "vault_id": {"type": "keyword"},
                "folder_id": {"type": "keyword"},
                "path": {
                    "type": "text",
                    "fields": {"keyword": {"type": "keyword"}},
                },
                "name": {
                    "type": "text",
                    "analyzer": "file_analyzer",
                    "fields": {
                        "keyword": {"type": "keyword"},
                        "suggest": {
                            "type": "completion",
                            "contexts": [
                                {"name": "vault_id", "type": "category", "path": "vault_id"}
                            ],
                        },
                    },
                },
                "content": {"type": "text", "analyzer": "file_analyzer"},
                "extension": {"type": "keyword"},
                "mime_type": {"type": "keyword"},
                "size_bytes": {"type": "long"},
                "tags": {"type": "keyword"},
                "owner_id": {"type": "keyword"},
                "is_public": {"type": "boolean"},
                "metadata": {
                    "type": "object",
                    "dynamic": False,
                    "properties": {key: {"type": "keyword"} for key in PROMOTED_METADATA_KEYS},
                },
                "created_at": {"type": "date"},
                "updated_at": {"type": "date"},
            },
        },
    }


def build_document(record: FileRecordRead, content: Optional[str] = None) -> Dict[str, Any]:
    document = record.model_dump(
        mode="json",
        include={
            "id", "vault_id", "folder_id", "path", "name", "extension", "mime_type",
            "size_bytes", "tags", "owner_id", "is_public", "metadata", "created_at", "updated_at",
        },
    )
    if content:
        document["content"] = content
    return document


def build_search_query(params: FileSearchParams) -> Dict[str, Any]:
    """
    把 FileSearchParams 转换为 bool 查询：
    must 中是 vault 范围和可选的全文匹配，filter 中是所有精确 / 范围条件。
    """
    must: List[Dict[str, Any]] = [{"term": {"vault_id": params.vault_id}}]
    if params.query:
        must.append({
            "multi_match": {
                "query": params.query,
                "fields": ["name^3", "content", "tags^2", "metadata.*"],
                "fuzziness": "AUTO",
            }
        })

    filters = params.filters
    filter_clauses: List[Dict[str, Any]] = []
    for field in ("folder_id", "extension", "mime_type", "owner_id"):
        value = getattr(filters, field)
        if value:
            filter_clauses.append({"term": {field: value}})

    if filters.tags:
        filter_clauses.append({"terms": {"tags": filters.tags}})

    for key, value in filters.metadata_equals().items():
        filter_clauses.append({"term": {f"metadata.{key}": value}})

    # 0 也是有效的边界，这里必须判断 None
    size_range: Dict[str, int] = {}
    if filters.min_size is not None:
        size_range["gte"] = filters.min_size
    if filters.max_size is not None:
        size_range["lte"] = filters.max_size
    if size_range:
        filter_clauses.append({"range": {"size_bytes": size_range}})

    date_range: Dict[str, str] = {}
    if filters.date_from is not None:
        date_range["gte"] = filters.date_from.isoformat()
    if filters.date_to is not None:
        date_range["lte"] = filters.date_to.isoformat()
    if date_range:
        filter_clauses.append({"range": {"created_at": date_range}})

    return {"bool": {"must": must, "filter": filter_clauses}}


def build_sort(params: FileSearchParams) -> Optional[List[Dict[str, Any]]]:
    """没有显式排序时返回 None，由 ES 按相关度排序。"""
    if params.sort is None:
        return None
    field = params.sort.field.value
    if field in TEXT_SORT_FIELDS:
        field = f"{field}.keyword"
    return [{field: {"order": params.sort.order.value}}]


def build_aggregations() -> Dict[str, Any]:
    return {
        name: {"terms": {"field": field, "size": size}}
        for name, (field, size) in FACET_AGGREGATIONS.items()
    }


def parse_facets(aggregations: Optional[Dict[str, Any]]) -> FileFacets:
    if not aggregations:
        return FileFacets()
    values: Dict[str, List[FacetBucket]] = {}
    for name in FACET_AGGREGATIONS:
        buckets = aggregations.get(name, {}).get("buckets", [])
        values[name] = [
            FacetBucket(key=str(bucket["key"]), doc_count=bucket["doc_count"])
            for bucket in buckets
        ]
    return FileFacets(**values)


def _body(response) -> Dict[str, Any]:
    """客户端返回的是 ObjectApiResponse，取出其中的原始字典。"""
    return getattr(response, "body", response)


class FileSearchEngine(ABC):
    """
    检索层接口：把查询条件解析为有序的文件 ID 列表和分面统计，不保存完整记录。
    所有实现都不应向调用方抛出异常。
    """

    @property
    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    async def setup_index(self) -> None:
        pass

    @abstractmethod
    async def index_file(self, record: FileRecordRead, content: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def bulk_index(self, records: Sequence[FileRecordRead]) -> int:
        pass

    @abstractmethod
    async def search(self, params: FileSearchParams, offset: Optional[int] = None) -> FileSearchResult:
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        pass

    @abstractmethod
    async def delete_vault_files(self, vault_id: str) -> None:
        pass

    @abstractmethod
    async def get_suggestions(self, vault_id: str, prefix: str, limit: int = 10) -> List[str]:
        pass


class NullFileSearchEngine(FileSearchEngine):
    """未启用 Elasticsearch 时使用的空实现。"""

    @property
    def is_available(self) -> bool:
        return False

    async def setup_index(self) -> None:
        return None

    async def index_file(self, record: FileRecordRead, content: Optional[str] = None) -> None:
        return None

    async def bulk_index(self, records: Sequence[FileRecordRead]) -> int:
        return 0

    async def search(self, params: FileSearchParams, offset: Optional[int] = None) -> FileSearchResult:
        return FileSearchResult.empty()

    async def delete_file(self, file_id: str) -> None:
        return None

    async def delete_vault_files(self, vault_id: str) -> None:
        return None

    async def get_suggestions(self, vault_id: str, prefix: str, limit: int = 10) -> List[str]:
        return []


class ElasticFileSearchEngine(BaseService, FileSearchEngine):
    """基于 Elasticsearch 的检索层实现。"""

    def __init__(self, client: AsyncElasticsearch, config: FileSearchConfig):
        super().__init__()
        self.client = client
        self.config = config
        self.index = config.index

    @property
    def is_available(self) -> bool:
        return True

    async def setup_index(self) -> None:
        try:
            if await self.client.indices.exists(index=self.index):
                self.logger.info(f"Search index '{self.index}' already exists")
                return
            body = build_index_body(self.config)
            await self.client.indices.create(
                index=self.index,
                settings=body["settings"],
                mappings=body["mappings"],
            )
            self.logger.info(f"✅ Created search index '{self.index}'")
        except Exception as e:
            self.logger.error(f"❌ Failed to set up search index '{self.index}': {e}")

    async def index_file(self, record: FileRecordRead, content: Optional[str] = None) -> None:
        try:
            await self.client.index(
                index=self.index,
                id=record.id,
                document=build_document(record, content),
            )
        except Exception as e:
            self.logger.warning(f"Failed to index file {record.id}: {e}")

    async def bulk_index(self, records: Sequence[FileRecordRead]) -> int:
        if not records:
            return 0
        actions = (
            {"_index": self.index, "_id": record.id, "_source": build_document(record)}
            for record in records
        )
        try:
            success, errors = await async_bulk(self.client, actions, raise_on_error=False)
        except Exception as e:
            self.logger.warning(f"Bulk index of {len(records)} file(s) failed: {e}")
            return 0
        if errors:
            self.logger.warning(f"Bulk index finished with {len(errors)} error(s), first: {errors[0]}")
        return success

    async def search(self, params: FileSearchParams, offset: Optional[int] = None) -> FileSearchResult:
        start = params.offset if offset is None else offset
        try:
            response = await self.client.search(
                index=self.index,
                query=build_search_query(params),
                sort=build_sort(params),
                aggs=build_aggregations(),
                from_=start,
                size=params.page_size,
                source=False,
                track_total_hits=True,
            )
        except Exception as e:
            self.logger.warning(f"Search failed for vault {params.vault_id}: {e}")
            return FileSearchResult.empty()

        response = _body(response)
        hits = response["hits"]
        return FileSearchResult(
            file_ids=[hit["_id"] for hit in hits["hits"]],
            total=hits["total"]["value"],
            took=response.get("took", 0),
            facets=parse_facets(response.get("aggregations")),
        )

    async def delete_file(self, file_id: str) -> None:
        try:
            await self.client.delete(index=self.index, id=file_id)
        except NotFoundError:
            return
        except Exception as e:
            self.logger.warning(f"Failed to delete file {file_id} from index: {e}")

    async def delete_vault_files(self, vault_id: str) -> None:
        try:
            await self.client.delete_by_query(
                index=self.index,
                query={"term": {"vault_id": vault_id}},
                conflicts="proceed",
            )
        except NotFoundError:
            return
        except Exception as e:
            self.logger.warning(f"Failed to delete vault {vault_id} from index: {e}")

    async def get_suggestions(self, vault_id: str, prefix: str, limit: int = 10) -> List[str]:
        if not prefix:
            return []
        try:
            response = await self.client.search(
                index=self.index,
                suggest={
                    SUGGESTION_NAME: {
                        "prefix": prefix,
                        "completion": {
                            "field": "name.suggest",
                            "size": limit,
                            "skip_duplicates": True,
                            "contexts": {"vault_id": [vault_id]},
                        },
                    }
                },
                source=False,
            )
        except Exception as e:
            self.logger.warning(f"Suggestion lookup failed for vault {vault_id}: {e}")
            return []

        entries = _body(response).get("suggest", {}).get(SUGGESTION_NAME, [])
        if not entries:
            return []
        return [option["text"] for option in entries[0].get("options", [])]


async def create_file_search_engine(config: FileSearchConfig, factory: ElasticsearchFactory) -> FileSearchEngine:
    """
    应用启动时调用一次：ES 可用则创建真实实现并确保索引存在，否则返回空实现。
    """
    client = await factory.init_client(config)
    if client is None:
        return NullFileSearchEngine()
    engine = ElasticFileSearchEngine(client, config)
    await engine.setup_index()
    return engine
