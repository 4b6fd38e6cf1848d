from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filevault.core.exceptions import FileStoreException
from filevault.models.files.file_record import FileRecord
from filevault.repo.crud.file.file_record_repo import FileRecordRepository
from filevault.schemas.file.file_record_schemas import FileRecordRead
from filevault.services._base_service import BaseService


class FileStoreAdapter(BaseService):
    """
    持久化存储适配器（数据库），文件元数据的唯一可信来源。

    每次调用都会打开独立的会话，因此可以安全地在请求之外（例如后台预取任务）使用。
    数据库错误会被包装成 FileStoreException 向上抛出，这是读取链路中唯一对调用方可见的失败。
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__()
        self.session_factory = session_factory

    async def find_many(
            self,
            ids: Optional[Sequence[str]] = None,
            filters: Optional[Dict[str, Any]] = None,
            sort_by: Optional[List[str]] = None,
    ) -> List[FileRecordRead]:
        if ids is not None and len(ids) == 0:
            return []

        try:
            async with self.session_factory() as session:
                repo = FileRecordRepository(session)
                rows = await repo.find_many(ids=ids, filters=filters, sort_by=sort_by)
                return self._to_read_models(rows)
        except SQLAlchemyError as e:
            self.logger.error(f"File store query failed (ids={len(ids) if ids is not None else 'all'}, filters={filters}): {e}")
            raise FileStoreException(extra={"reason": str(e)}) from e

    def _to_read_models(self, rows: Sequence[FileRecord]) -> List[FileRecordRead]:
        """单行数据不合法时只丢弃这一行，不影响整页结果。"""
        records: List[FileRecordRead] = []
        for row in rows:
            try:
                records.append(self.to_read_model(row))
            except ValidationError as e:
                self.logger.warning(f"⚠️ Dropped invalid file record {row.id}: {e.error_count()} validation error(s)")
        return records

    @staticmethod
    def to_read_model(row: FileRecord) -> FileRecordRead:
        return FileRecordRead(
            id=row.id,
            vault_id=row.vault_id,
            folder_id=row.folder_id,
            path=row.path,
            name=row.name,
            extension=row.extension,
            mime_type=row.mime_type,
            size_bytes=row.size_bytes,
            storage_provider=row.storage_provider,
            storage_bucket=row.storage_bucket,
            storage_path=row.storage_path,
            storage_key=row.storage_key,
            checksum_md5=row.checksum_md5,
            checksum_sha256=row.checksum_sha256,
            metadata=row.file_metadata or {},
            version=row.version,
            is_latest=row.is_latest,
            parent_file_id=row.parent_file_id,
            thumbnail_small=row.thumbnail_small,
            thumbnail_medium=row.thumbnail_medium,
            thumbnail_large=row.thumbnail_large,
            tags=row.tags,
            owner_id=row.owner_id,
            is_public=row.is_public,
            is_safe=row.is_safe,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
