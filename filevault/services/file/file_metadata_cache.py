import asyncio
import json
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from filevault.config.config_schema import FileCacheConfig
from filevault.infra.redis.base_redis_client import BaseRedisClient
from filevault.infra.redis.redis_factory import RedisFactory
from filevault.schemas.file.file_record_schemas import FileRecordRead
from filevault.services._base_service import BaseService


FILE_KEY_PREFIX = "file:"
_DATE_TAG = "$date"


def file_key(file_id: str) -> str:
    return f"{FILE_KEY_PREFIX}{file_id}"


def recent_key(vault_id: str) -> str:
    return f"vault:{vault_id}:recent"


def _json_default(value):
    if isinstance(value, datetime):
        return {_DATE_TAG: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_object_hook(obj: dict):
    if len(obj) == 1 and _DATE_TAG in obj:
        return datetime.fromisoformat(obj[_DATE_TAG])
    return obj


def serialize_file_record(record: FileRecordRead) -> Dict[str, str]:
    """
    把 FileRecordRead 展开为 Redis Hash 所需的扁平字符串字典。
    整数统一写成十进制字符串（size_bytes 不经过浮点数），布尔值写成 "1"/"0"，
    tags / metadata 写成 JSON，缺省的可选字段写成空字符串。
    """
    return {
        "vault_id": record.vault_id,
        "folder_id": record.folder_id or "",
        "path": record.path,
        "name": record.name,
        "extension": record.extension,
        "mime_type": record.mime_type,
        "size_bytes": str(record.size_bytes),
        "storage_provider": record.storage_provider,
        "storage_bucket": record.storage_bucket,
        "storage_path": record.storage_path,
        "storage_key": record.storage_key,
        "checksum_md5": record.checksum_md5,
        "checksum_sha256": record.checksum_sha256 or "",
        "metadata": json.dumps(record.metadata, default=_json_default),
        "version": str(record.version),
        "is_latest": "1" if record.is_latest else "0",
        "parent_file_id": record.parent_file_id or "",
        "thumbnail_small": record.thumbnail_small or "",
        "thumbnail_medium": record.thumbnail_medium or "",
        "thumbnail_large": record.thumbnail_large or "",
        "tags": json.dumps(record.tags),
        "owner_id": record.owner_id,
        "is_public": "1" if record.is_public else "0",
        "is_safe": "1" if record.is_safe else "0",
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def _decode_json(raw: Optional[str], default, field: str, file_id: str, logger):
    if not raw:
        return default
    try:
        value = json.loads(raw, object_hook=_json_object_hook)
    except (ValueError, TypeError) as e:
        logger.warning(f"Malformed cached '{field}' for file {file_id}, treated as empty: {e}")
        return default
    if not isinstance(value, type(default)):
        logger.warning(f"Unexpected cached '{field}' type for file {file_id}, treated as empty")
        return default
    return value


def parse_file_record(file_id: str, data: Dict[str, str], logger) -> Optional[FileRecordRead]:
    """
    serialize_file_record 的逆操作。
    tags / metadata 的 JSON 损坏时按空值处理；缺少必填字段或标量无法解析时返回 None（视为未命中）。
    """
    try:
        return FileRecordRead(
            id=file_id,
            vault_id=data["vault_id"],
            folder_id=data.get("folder_id") or None,
            path=data["path"],
            name=data["name"],
            extension=data.get("extension", ""),
            mime_type=data.get("mime_type") or "application/octet-stream",
            size_bytes=int(data.get("size_bytes") or "0"),
            storage_provider=data.get("storage_provider", ""),
            storage_bucket=data.get("storage_bucket", ""),
            storage_path=data.get("storage_path", ""),
            storage_key=data.get("storage_key", ""),
            checksum_md5=data.get("checksum_md5", ""),
            checksum_sha256=data.get("checksum_sha256") or None,
            metadata=_decode_json(data.get("metadata"), {}, "metadata", file_id, logger),
            version=int(data.get("version") or "1"),
            is_latest=data.get("is_latest") != "0",
            parent_file_id=data.get("parent_file_id") or None,
            thumbnail_small=data.get("thumbnail_small") or None,
            thumbnail_medium=data.get("thumbnail_medium") or None,
            thumbnail_large=data.get("thumbnail_large") or None,
            tags=_decode_json(data.get("tags"), [], "tags", file_id, logger),
            owner_id=data["owner_id"],
            is_public=data.get("is_public") == "1",
            is_safe=data.get("is_safe") != "0",
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
    except (KeyError, ValueError, TypeError) as e:
        logger.warning(f"Discarding malformed cache entry for file {file_id}: {e}")
        return None


class FileMetadataCache(ABC):
    """
    文件元数据缓存层接口。
    所有实现都不应向调用方抛出异常：缓存只是加速手段，失败一律视为未命中。
    """

    @property
    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    async def get(self, file_id: str) -> Optional[FileRecordRead]:
        pass

    @abstractmethod
    async def get_many(self, file_ids: Sequence[str]) -> Dict[str, FileRecordRead]:
        pass

    @abstractmethod
    async def set(self, record: FileRecordRead) -> None:
        pass

    @abstractmethod
    async def set_many(self, records: Sequence[FileRecordRead]) -> None:
        pass

    @abstractmethod
    async def invalidate(self, file_id: str) -> None:
        pass

    @abstractmethod
    async def invalidate_many(self, file_ids: Sequence[str]) -> None:
        pass

    @abstractmethod
    async def get_recent(self, vault_id: str, limit: int = 100) -> List[str]:
        pass


class NullFileMetadataCache(FileMetadataCache):
    """未启用 Redis 时使用的空实现，所有操作都是无副作用的空操作。"""

    @property
    def is_available(self) -> bool:
        return False

    async def get(self, file_id: str) -> Optional[FileRecordRead]:
        return None

    async def get_many(self, file_ids: Sequence[str]) -> Dict[str, FileRecordRead]:
        return {}

    async def set(self, record: FileRecordRead) -> None:
        return None

    async def set_many(self, records: Sequence[FileRecordRead]) -> None:
        return None

    async def invalidate(self, file_id: str) -> None:
        return None

    async def invalidate_many(self, file_ids: Sequence[str]) -> None:
        return None

    async def get_recent(self, vault_id: str, limit: int = 100) -> List[str]:
        return []


class RedisFileMetadataCache(BaseService, FileMetadataCache):
    """
    基于 Redis Hash 的文件元数据缓存。

    - `file:{id}`             Hash，保存一条记录的全部字段，带 TTL
    - `vault:{vault_id}:recent` Sorted Set，按写入时间（毫秒）记录最近写入的文件 ID
    """

    def __init__(self, redis: BaseRedisClient, ttl_seconds: int = 3600, recent_max_size: int = 1000):
        super().__init__()
        self.redis = redis
        self.ttl = ttl_seconds
        self.recent_max_size = recent_max_size

    @property
    def is_available(self) -> bool:
        return True

    async def get(self, file_id: str) -> Optional[FileRecordRead]:
        try:
            data = await self.redis.hgetall(file_key(file_id))
        except Exception as e:
            self.logger.warning(f"Cache get failed for file {file_id}: {e}")
            return None

        if not data:
            return None
        return parse_file_record(file_id, data, self.logger)

    async def get_many(self, file_ids: Sequence[str]) -> Dict[str, FileRecordRead]:
        if not file_ids:
            return {}

        try:
            pipe = self.redis.pipeline(transaction=False)
            for file_id in file_ids:
                pipe.hgetall(file_key(file_id))
            results = await pipe.execute(raise_on_error=False)
        except Exception as e:
            self.logger.warning(f"Cache get_many failed for {len(file_ids)} file(s): {e}")
            return {}

        files: Dict[str, FileRecordRead] = {}
        for file_id, data in zip(file_ids, results):
            if isinstance(data, Exception):
                self.logger.warning(f"Cache read failed for file {file_id}: {data}")
                continue
            if not data:
                continue
            record = parse_file_record(file_id, data, self.logger)
            if record is not None:
                files[file_id] = record
        return files

    async def set(self, record: FileRecordRead) -> None:
        key = file_key(record.id)
        vault_recent_key = recent_key(record.vault_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(key, mapping=serialize_file_record(record))
            pipe.expire(key, self.ttl)
            pipe.zadd(vault_recent_key, {record.id: time.time() * 1000})
            # 只保留最近的 recent_max_size 条
            pipe.zremrangebyrank(vault_recent_key, 0, -(self.recent_max_size + 1))
            await pipe.execute()
        except Exception as e:
            self.logger.warning(f"Cache set failed for file {record.id}: {e}")

    async def set_many(self, records: Sequence[FileRecordRead]) -> None:
        if not records:
            return
        # 每条记录独立写入、独立过期，部分失败可以接受
        await asyncio.gather(*(self.set(record) for record in records))

    async def invalidate(self, file_id: str) -> None:
        try:
            await self.redis.delete(file_key(file_id))
        except Exception as e:
            self.logger.warning(f"Cache invalidate failed for file {file_id}: {e}")

    async def invalidate_many(self, file_ids: Sequence[str]) -> None:
        if not file_ids:
            return
        try:
            await self.redis.delete(*(file_key(file_id) for file_id in file_ids))
        except Exception as e:
            self.logger.warning(f"Cache invalidate_many failed for {len(file_ids)} file(s): {e}")

    async def get_recent(self, vault_id: str, limit: int = 100) -> List[str]:
        if limit <= 0:
            return []
        try:
            return list(await self.redis.zrevrange(recent_key(vault_id), 0, limit - 1))
        except Exception as e:
            self.logger.warning(f"Cache get_recent failed for vault {vault_id}: {e}")
            return []


async def create_file_metadata_cache(config: FileCacheConfig, factory: RedisFactory) -> FileMetadataCache:
    """
    应用启动时调用一次：Redis 可用则返回真实实现，否则返回空实现。
    """
    client = await factory.init_client(config)
    if client is None:
        return NullFileMetadataCache()
    return RedisFileMetadataCache(
        BaseRedisClient(client),
        ttl_seconds=config.ttl_seconds,
        recent_max_size=config.recent_max_size,
    )
