from typing import Optional, List, Dict, Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from filevault.models.files.file_record import FileRecord
from filevault.repo.crud.common.base_repo import BaseRepository


class FileRecordRepository(BaseRepository[FileRecord]):
    """
    FileRecordRepository 提供文件记录的数据库查询。
    所有查询都会预加载 tags，避免在异步会话中触发延迟加载。
    """
    def __init__(self, db: AsyncSession, context: Optional[dict] = None):
        super().__init__(db, FileRecord, context)

    async def find_many(
            self,
            ids: Optional[Sequence[str]] = None,
            filters: Optional[Dict[str, Any]] = None,
            sort_by: Optional[List[str]] = None,
    ) -> List[FileRecord]:
        """
        按 ID 列表和/或过滤条件批量查询文件记录。

        Args:
            ids: 为 None 时不限制 ID；为空列表时直接返回空结果。
            filters: `field__operator` 形式的过滤条件，例如 {"vault_id": "v1", "name__icontains": "report"}。
            sort_by: 排序字段列表，"-" 前缀表示降序。
        """
        if ids is not None and len(ids) == 0:
            return []

        conditions = dict(filters or {})
        if ids is not None:
            conditions["id__in"] = list(ids)

        return await self.list_by_filters(
            filters=conditions,
            sort_by=sort_by,
            eager_loads=[selectinload(FileRecord.tags)],
        )
