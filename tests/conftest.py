from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from filevault.config.config_schema import LoaderConfig
from filevault.core.background import BackgroundTaskRunner
from filevault.schemas.file.file_record_schemas import FileRecordRead, FileSearchParams, FileSearchResult
from filevault.services.file.file_metadata_cache import FileMetadataCache
from filevault.services.file.file_search_engine import FileSearchEngine
from filevault.services.file.smart_file_loader import SmartFileLoader


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(file_id: str = "f1", vault_id: str = "V1", **overrides) -> FileRecordRead:
    data = dict(
        id=file_id,
        vault_id=vault_id,
        path=f"/docs/{file_id}.pdf",
        name=f"{file_id}.pdf",
        extension="pdf",
        mime_type="application/pdf",
        size_bytes=1024,
        owner_id="u1",
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )
    data.update(overrides)
    return FileRecordRead(**data)


# ==========================
# 三层存储的内存替身
# ==========================

def _matches(record: FileRecordRead, key: str, value) -> bool:
    field, _, op = key.partition("__")
    actual = getattr(record, field)
    if op in ("", "eq"):
        return actual == value
    if op == "icontains":
        return str(value).lower() in str(actual).lower()
    if op == "ge":
        return actual >= value
    if op == "le":
        return actual <= value
    if op == "in":
        return actual in value
    raise AssertionError(f"unsupported filter {key}")


class InMemoryFileStore:
    """按 FileStoreAdapter.find_many 的约定工作，并记录每一次调用。"""

    def __init__(self, records: Sequence[FileRecordRead] = ()):
        self.records: Dict[str, FileRecordRead] = {record.id: record for record in records}
        self.calls: List[dict] = []
        self.error: Optional[Exception] = None

    def put(self, record: FileRecordRead) -> None:
        self.records[record.id] = record

    async def find_many(self, ids=None, filters=None, sort_by=None) -> List[FileRecordRead]:
        self.calls.append({
            "ids": list(ids) if ids is not None else None,
            "filters": dict(filters or {}),
            "sort_by": sort_by,
        })
        if self.error is not None:
            raise self.error
        if ids is not None:
            rows = [self.records[file_id] for file_id in ids if file_id in self.records]
        else:
            rows = list(self.records.values())
        for key, value in (filters or {}).items():
            rows = [row for row in rows if _matches(row, key, value)]
        return rows


class InMemoryCache(FileMetadataCache):
    def __init__(self, available: bool = True):
        self.available = available
        self.entries: Dict[str, FileRecordRead] = {}
        self.recent: Dict[str, List[str]] = {}
        self.get_many_calls: List[List[str]] = []

    @property
    def is_available(self) -> bool:
        return self.available

    async def get(self, file_id):
        if not self.available:
            return None
        return self.entries.get(file_id)

    async def get_many(self, file_ids):
        if not self.available:
            return {}
        self.get_many_calls.append(list(file_ids))
        return {file_id: self.entries[file_id] for file_id in file_ids if file_id in self.entries}

    async def set(self, record):
        if not self.available:
            return
        self.entries[record.id] = record
        recent = self.recent.setdefault(record.vault_id, [])
        if record.id in recent:
            recent.remove(record.id)
        recent.insert(0, record.id)

    async def set_many(self, records):
        for record in records:
            await self.set(record)

    async def invalidate(self, file_id):
        self.entries.pop(file_id, None)

    async def invalidate_many(self, file_ids):
        for file_id in file_ids:
            self.entries.pop(file_id, None)

    async def get_recent(self, vault_id, limit=100):
        if not self.available:
            return []
        return self.recent.get(vault_id, [])[:limit]


class InMemorySearch(FileSearchEngine):
    """
    hits 不为 None 时按给定顺序返回这些 ID；
    否则从已索引的文档中按 vault 和名称子串匹配。
    """

    def __init__(self, available: bool = True, hits: Optional[List[str]] = None, total: Optional[int] = None):
        self.available = available
        self.hits = hits
        self.total = total
        self.indexed: Dict[str, FileRecordRead] = {}
        self.deleted: List[str] = []
        self.deleted_vaults: List[str] = []
        self.search_calls: List[tuple] = []

    @property
    def is_available(self) -> bool:
        return self.available

    async def setup_index(self):
        return None

    async def index_file(self, record, content=None):
        self.indexed[record.id] = record

    async def bulk_index(self, records):
        for record in records:
            self.indexed[record.id] = record
        return len(records)

    async def search(self, params: FileSearchParams, offset=None) -> FileSearchResult:
        self.search_calls.append((params, offset))
        if not self.available:
            return FileSearchResult.empty()

        if self.hits is not None:
            candidates = list(self.hits)
        else:
            candidates = [
                record.id for record in self.indexed.values()
                if record.vault_id == params.vault_id
                and (not params.query or params.query.lower() in record.name.lower())
            ]
        start = params.offset if offset is None else offset
        return FileSearchResult(
            file_ids=candidates[start:start + params.page_size],
            total=self.total if self.total is not None else len(candidates),
        )

    async def delete_file(self, file_id):
        self.deleted.append(file_id)
        self.indexed.pop(file_id, None)

    async def delete_vault_files(self, vault_id):
        self.deleted_vaults.append(vault_id)
        self.indexed = {k: v for k, v in self.indexed.items() if v.vault_id != vault_id}

    async def get_suggestions(self, vault_id, prefix, limit=10):
        if not prefix:
            return []
        names = [
            record.name for record in self.indexed.values()
            if record.vault_id == vault_id and record.name.startswith(prefix)
        ]
        return names[:limit]


# ==========================
# 基于字典的 Redis 替身 (Hash / Sorted Set / Pipeline)
# ==========================

class FakeRedis:
    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.broken_keys = set()

    def _hset(self, name, mapping=None):
        self.hashes.setdefault(name, {}).update(mapping or {})
        return len(mapping or {})

    def _hgetall(self, name):
        if name in self.broken_keys:
            raise ConnectionError(f"cannot read {name}")
        return dict(self.hashes.get(name, {}))

    def _expire(self, name, seconds):
        self.ttls[name] = seconds
        return name in self.hashes

    def _zadd(self, name, mapping):
        self.zsets.setdefault(name, {}).update(mapping)
        return len(mapping)

    def _sorted_members(self, name, reverse=False):
        members = self.zsets.get(name, {})
        return [m for m, _ in sorted(members.items(), key=lambda item: (item[1], item[0]), reverse=reverse)]

    @staticmethod
    def _slice(items, start, end):
        if end < 0:
            end = len(items) + end
        if start < 0:
            start = len(items) + start
        return items[max(start, 0):end + 1]

    def _zremrangebyrank(self, name, start, end):
        doomed = self._slice(self._sorted_members(name), start, end)
        for member in doomed:
            del self.zsets[name][member]
        return len(doomed)

    def _zrevrange(self, name, start, end):
        return self._slice(self._sorted_members(name, reverse=True), start, end)

    def _delete(self, *names):
        removed = 0
        for name in names:
            if self.hashes.pop(name, None) is not None:
                removed += 1
        return removed

    async def hgetall(self, name):
        return self._hgetall(name)

    async def delete(self, *names):
        return self._delete(*names)

    async def expire(self, name, seconds):
        return self._expire(name, seconds)

    async def zrevrange(self, name, start, end):
        return self._zrevrange(name, start, end)

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands = []

    def _queue(self, func, *args, **kwargs):
        self.commands.append((func, args, kwargs))
        return self

    def hset(self, name, mapping=None):
        return self._queue(self.redis._hset, name, mapping=mapping)

    def hgetall(self, name):
        return self._queue(self.redis._hgetall, name)

    def expire(self, name, seconds):
        return self._queue(self.redis._expire, name, seconds)

    def zadd(self, name, mapping):
        return self._queue(self.redis._zadd, name, mapping)

    def zremrangebyrank(self, name, start, end):
        return self._queue(self.redis._zremrangebyrank, name, start, end)

    async def execute(self, raise_on_error=True):
        results = []
        for func, args, kwargs in self.commands:
            try:
                results.append(func(*args, **kwargs))
            except Exception as e:
                if raise_on_error:
                    raise
                results.append(e)
        self.commands = []
        return results


# ==========================
# fixtures
# ==========================

@pytest.fixture
def store():
    return InMemoryFileStore()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def search():
    return InMemorySearch()


@pytest.fixture
def runner():
    return BackgroundTaskRunner(name="test")


@pytest.fixture
def make_loader(runner):
    def _make(store, cache, search, **config):
        loader_config = LoaderConfig(**{"prefetch_enabled": False, **config})
        return SmartFileLoader(
            store=store,
            cache=cache,
            search_engine=search,
            task_runner=runner,
            config=loader_config,
        )
    return _make
