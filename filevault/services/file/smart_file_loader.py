import asyncio
import time
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from filevault.config.config_schema import LoaderConfig
from filevault.core.background import BackgroundTaskRunner
from filevault.enums.query_enums import LoadPath, SortOrder
from filevault.metrics.loader_metrics import (
    file_cache_lookups,
    file_load_duration,
    file_prefetches,
    file_resolution_gaps,
)
from filevault.schemas.file.file_record_schemas import (
    FacetBucket,
    FileFacets,
    FileFilters,
    FileRecordRead,
    FileSearchParams,
    PaginatedFiles,
)
from filevault.services._base_service import BaseService
from filevault.services.file.file_metadata_cache import FileMetadataCache
from filevault.services.file.file_search_engine import FileSearchEngine
from filevault.services.file.file_store_adapter import FileStoreAdapter


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _to_buckets(counter: Counter) -> List[FacetBucket]:
    return [
        FacetBucket(key=key, doc_count=count)
        for key, count in sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    ]


def _metadata_matches(actual: Any, expected: str) -> bool:
    if actual is None:
        return False
    if isinstance(actual, bool):
        return str(actual).lower() == expected.lower()
    return str(actual) == expected


class SmartFileLoader(BaseService):
    """
    文件列表的分层读取入口。

    读取顺序为 检索层 (ES) -> 缓存层 (Redis) -> 数据库：
    - 检索层只负责给出有序的文件 ID 和分面统计；
    - 缓存层按 ID 批量命中完整记录；
    - 剩余未命中的 ID 再到数据库批量查询，并回填缓存。
    检索层不可用或没有命中时，整页结果直接从数据库推导（降级模式）。

    缓存层与检索层的任何失败都不会抛给调用方，只有数据库的失败会向上传播。
    """

    def __init__(
            self,
            store: FileStoreAdapter,
            cache: FileMetadataCache,
            search_engine: FileSearchEngine,
            task_runner: BackgroundTaskRunner,
            config: Optional[LoaderConfig] = None,
    ):
        super().__init__()
        self.store = store
        self.cache = cache
        self.search_engine = search_engine
        self.task_runner = task_runner
        self.config = config or LoaderConfig()

    # ==========================
    # 分页读取
    # ==========================

    def resolve_page_size(self, page_size: Optional[int]) -> int:
        """未指定页大小时使用默认值，超过上限时截断到 max_page_size。"""
        if page_size is None:
            page_size = self.config.default_page_size
        return min(page_size, self.config.max_page_size)

    def _clamp_page_size(self, params: FileSearchParams) -> FileSearchParams:
        page_size = self.resolve_page_size(params.page_size)
        if page_size == params.page_size:
            return params
        self.logger.warning(f"page_size {params.page_size} exceeds limit, clamped to {page_size}")
        return params.model_copy(update={"page_size": page_size})

    async def load_page(self, params: FileSearchParams) -> PaginatedFiles:
        started = time.perf_counter()
        params = self._clamp_page_size(params)

        result = await self.search_engine.search(params)
        if not self.search_engine.is_available or not result.file_ids:
            # 空的检索结果不代表没有文件，必须回到数据库确认
            page = await self.load_from_database(params)
            page.took = _elapsed_ms(started)
            file_load_duration.labels(path=LoadPath.DATABASE.value).observe(time.perf_counter() - started)
            return page

        files = await self._resolve_in_order(result.file_ids)
        has_more = (params.page + 1) * params.page_size < result.total

        if has_more:
            self._schedule_prefetch(params)

        file_load_duration.labels(path=LoadPath.INDEX.value).observe(time.perf_counter() - started)
        return PaginatedFiles(
            files=files,
            total=result.total,
            page=params.page,
            page_size=params.page_size,
            has_more=has_more,
            facets=result.facets,
            took=_elapsed_ms(started),
        )

    async def _resolve_in_order(self, file_ids: Sequence[str]) -> List[FileRecordRead]:
        """
        按给定顺序把 ID 解析为完整记录：先查缓存，未命中的再一次性查数据库并回填缓存。
        缓存和数据库中都不存在的 ID 会被丢弃。
        """
        cached: Dict[str, FileRecordRead] = {}
        if self.cache.is_available:
            cached = await self.cache.get_many(file_ids)

        missing = [file_id for file_id in file_ids if file_id not in cached]
        if self.cache.is_available:
            file_cache_lookups.labels(result="hit").inc(len(cached))
            file_cache_lookups.labels(result="miss").inc(len(missing))

        fetched: Dict[str, FileRecordRead] = {}
        if missing:
            records = await self.store.find_many(ids=missing)
            fetched = {record.id: record for record in records}
            if fetched:
                await self.cache.set_many(list(fetched.values()))

        files: List[FileRecordRead] = []
        gaps = 0
        for file_id in file_ids:
            record = cached.get(file_id) or fetched.get(file_id)
            if record is None:
                gaps += 1
                continue
            files.append(record)

        if gaps:
            file_resolution_gaps.inc(gaps)
            self.logger.warning(f"{gaps} indexed file id(s) resolved to no record and were dropped")
        return files

    # ==========================
    # 降级链路：直接查询数据库
    # ==========================

    async def load_from_database(self, params: FileSearchParams) -> PaginatedFiles:
        """
        绕过检索层，直接从数据库读取命中的全部记录，在内存中过滤、统计分面并切出当前页。
        这是 O(命中行数) 的降级模式，只在检索层不可用或无结果时使用。
        """
        started = time.perf_counter()
        params = self._clamp_page_size(params)

        records = await self.store.find_many(
            filters=self._build_store_filters(params),
            sort_by=self._build_store_ordering(params),
        )
        records = [record for record in records if self._matches_in_process(record, params.filters)]

        total = len(records)
        offset = params.offset
        return PaginatedFiles(
            files=records[offset:offset + params.page_size],
            total=total,
            page=params.page,
            page_size=params.page_size,
            has_more=(params.page + 1) * params.page_size < total,
            facets=self.build_facets(records),
            took=_elapsed_ms(started),
        )

    @staticmethod
    def _build_store_filters(params: FileSearchParams) -> Dict[str, Any]:
        filters = params.filters
        conditions: Dict[str, Any] = {
            "vault_id": params.vault_id,
            "folder_id": filters.folder_id,
            "extension": filters.extension,
            "mime_type": filters.mime_type,
            "owner_id": filters.owner_id,
            "name__icontains": params.query,
            "size_bytes__ge": filters.min_size,
            "size_bytes__le": filters.max_size,
            "created_at__ge": filters.date_from,
            "created_at__le": filters.date_to,
        }
        return {key: value for key, value in conditions.items() if value is not None}

    @staticmethod
    def _build_store_ordering(params: FileSearchParams) -> Optional[List[str]]:
        if params.sort is None:
            return None  # 仓储默认按创建时间倒序
        field = params.sort.field.value
        return [f"-{field}" if params.sort.order == SortOrder.DESC else field, "id"]

    @staticmethod
    def _matches_in_process(record: FileRecordRead, filters: FileFilters) -> bool:
        """标签和 metadata 条件无法下推到数据库，在内存中过滤。"""
        if filters.tags and not set(filters.tags) & set(record.tags):
            return False
        for key, expected in filters.metadata_equals().items():
            if not _metadata_matches(record.metadata.get(key), expected):
                return False
        return True

    @staticmethod
    def build_facets(records: Iterable[FileRecordRead]) -> FileFacets:
        extensions: Counter = Counter()
        projects: Counter = Counter()
        statuses: Counter = Counter()
        tags: Counter = Counter()

        for record in records:
            if record.extension:
                extensions[record.extension] += 1
            project = record.metadata.get("project")
            if project not in (None, ""):
                projects[str(project)] += 1
            status = record.metadata.get("status")
            if status not in (None, ""):
                statuses[str(status)] += 1
            tags.update(record.tags)

        return FileFacets(
            extensions=_to_buckets(extensions),
            projects=_to_buckets(projects),
            statuses=_to_buckets(statuses),
            tags=_to_buckets(tags),
        )

    # ==========================
    # 后台预取
    # ==========================

    def _schedule_prefetch(self, params: FileSearchParams) -> None:
        if not self.config.prefetch_enabled or not self.cache.is_available:
            return
        self.task_runner.submit(
            lambda: self.prefetch_next_page(params),
            delay=self.config.prefetch_delay_ms / 1000,
            label=f"prefetch:{params.vault_id}:{params.page + 1}",
        )

    async def prefetch_next_page(self, params: FileSearchParams) -> None:
        """
        预热下一页：从下一页的起始位置开始，按 prefetch_page_multiplier 倍的页大小检索，
        把缓存中还没有的记录从数据库读出并写入缓存。
        """
        if not self.cache.is_available:
            return

        window = params.model_copy(update={
            "page": params.page + 1,
            "page_size": params.page_size * self.config.prefetch_page_multiplier,
        })
        try:
            # 窗口从下一页的起始位置开始，而不是按放大后的页大小换算出的 page+1 偏移
            result = await self.search_engine.search(window, offset=(params.page + 1) * params.page_size)
            if not result.file_ids:
                file_prefetches.labels(outcome="empty").inc()
                return

            cached = await self.cache.get_many(result.file_ids)
            missing = [file_id for file_id in result.file_ids if file_id not in cached]
            if missing:
                records = await self.store.find_many(ids=missing)
                await self.cache.set_many(records)
        except Exception:
            file_prefetches.labels(outcome="failed").inc()
            raise

        file_prefetches.labels(outcome="completed").inc()
        self.logger.debug(
            f"Prefetched vault {params.vault_id} page {params.page + 1}: "
            f"{len(result.file_ids)} id(s), {len(missing)} loaded from store"
        )

    # ==========================
    # 单条读取与写侧通知
    # ==========================

    async def get_file(self, file_id: str) -> Optional[FileRecordRead]:
        record = await self.cache.get(file_id)
        if record is not None:
            file_cache_lookups.labels(result="hit").inc()
            return record
        if self.cache.is_available:
            file_cache_lookups.labels(result="miss").inc()

        records = await self.store.find_many(ids=[file_id])
        if not records:
            return None
        record = records[0]
        await self.cache.set(record)
        return record

    async def invalidate_file(self, file_id: str) -> None:
        await asyncio.gather(
            self.cache.invalidate(file_id),
            self.search_engine.delete_file(file_id),
        )
        self.logger.info(f"🧹 Invalidated file {file_id} in cache and search index")

    async def reindex_file(self, file_id: str) -> Optional[FileRecordRead]:
        """
        从数据库重新读取记录，并同时写入缓存和检索索引。
        记录已不存在时，从两个派生层中移除它并返回 None。
        """
        records = await self.store.find_many(ids=[file_id])
        if not records:
            self.logger.warning(f"Reindex requested for missing file {file_id}, removing derived entries")
            await self.invalidate_file(file_id)
            return None

        record = records[0]
        await asyncio.gather(
            self.cache.set(record),
            self.search_engine.index_file(record),
        )
        self.logger.info(f"🔄 Reindexed file {file_id}")
        return record

    # ==========================
    # vault 级别操作
    # ==========================

    async def get_recent_files(self, vault_id: str, limit: int = 100) -> List[FileRecordRead]:
        file_ids = await self.cache.get_recent(vault_id, limit)
        if not file_ids:
            return []
        return await self._resolve_in_order(file_ids)

    async def get_suggestions(self, vault_id: str, prefix: str, limit: int = 10) -> List[str]:
        return await self.search_engine.get_suggestions(vault_id, prefix, limit)

    async def reindex_vault(self, vault_id: str) -> int:
        """重新把某个 vault 的全部记录写入缓存和检索索引，返回处理的记录数。"""
        records = await self.store.find_many(filters={"vault_id": vault_id})
        if not records:
            return 0
        _, indexed = await asyncio.gather(
            self.cache.set_many(records),
            self.search_engine.bulk_index(records),
        )
        self.logger.info(f"🔄 Reindexed vault {vault_id}: {len(records)} record(s), {indexed} indexed")
        return len(records)

    async def remove_vault_from_index(self, vault_id: str) -> None:
        await self.search_engine.delete_vault_files(vault_id)
        self.logger.info(f"🧹 Removed vault {vault_id} from search index")
