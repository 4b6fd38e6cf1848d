from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from filevault.api.dependencies.services import get_smart_file_loader
from filevault.core.api_response import response_success, StandardResponse
from filevault.core.exceptions import FileRecordNotFoundException
from filevault.enums.query_enums import SortField, SortOrder
from filevault.schemas.file.file_record_schemas import (
    FileFilters,
    FileRecordRead,
    FileSearchParams,
    PaginatedFiles,
    SortSpec,
)
from filevault.services.file.smart_file_loader import SmartFileLoader

router = APIRouter()


def _parse_metadata_filters(items: List[str]) -> dict:
    """`meta=key:value` 形式的查询参数转为字典，格式不对的项直接忽略。"""
    conditions = {}
    for item in items:
        key, sep, value = item.partition(":")
        if sep and key:
            conditions[key] = value
    return conditions


# === List Files (分层读取) ===
@router.get(
    "/files",
    response_model=StandardResponse[PaginatedFiles],
    summary="分页获取文件列表",
)
async def list_files(
    vault_id: str = Query(..., min_length=1),
    q: Optional[str] = Query(None, description="全文检索关键字"),
    folder_id: Optional[str] = Query(None),
    extension: Optional[str] = Query(None),
    mime_type: Optional[str] = Query(None),
    owner_id: Optional[str] = Query(None),
    tags: List[str] = Query([]),
    min_size: Optional[int] = Query(None, ge=0),
    max_size: Optional[int] = Query(None, ge=0),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    project: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    meta: List[str] = Query([], description="其它 metadata 等值条件，格式 key:value"),
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1, description="缺省时使用配置的默认页大小，超过上限会被截断"),
    sort_by: Optional[SortField] = Query(None),
    sort_order: SortOrder = Query(SortOrder.DESC),
    loader: SmartFileLoader = Depends(get_smart_file_loader),
):
    params = FileSearchParams(
        vault_id=vault_id,
        query=q,
        filters=FileFilters(
            folder_id=folder_id,
            extension=extension,
            mime_type=mime_type,
            owner_id=owner_id,
            tags=tags,
            min_size=min_size,
            max_size=max_size,
            date_from=date_from,
            date_to=date_to,
            project=project,
            status=status,
            metadata=_parse_metadata_filters(meta),
        ),
        page=page,
        page_size=loader.resolve_page_size(page_size),
        sort=SortSpec(field=sort_by, order=sort_order) if sort_by is not None else None,
    )
    result = await loader.load_page(params)
    return response_success(data=result)


# === Get File ===
@router.get(
    "/files/{file_id}",
    response_model=StandardResponse[FileRecordRead],
    summary="获取单个文件的元数据",
)
async def get_file(file_id: str, loader: SmartFileLoader = Depends(get_smart_file_loader)):
    record = await loader.get_file(file_id)
    if record is None:
        raise FileRecordNotFoundException(file_id)
    return response_success(data=record)


# === Invalidate File ===
@router.post(
    "/files/{file_id}/invalidate",
    response_model=StandardResponse[None],
    summary="清除文件的缓存和索引",
)
async def invalidate_file(file_id: str, loader: SmartFileLoader = Depends(get_smart_file_loader)):
    await loader.invalidate_file(file_id)
    return response_success(message="File invalidated")


# === Reindex File ===
@router.post(
    "/files/{file_id}/reindex",
    response_model=StandardResponse[FileRecordRead],
    summary="从数据库重建文件的缓存和索引",
)
async def reindex_file(file_id: str, loader: SmartFileLoader = Depends(get_smart_file_loader)):
    record = await loader.reindex_file(file_id)
    if record is None:
        raise FileRecordNotFoundException(file_id)
    return response_success(data=record, message="File reindexed")


# === Recent Files ===
@router.get(
    "/vaults/{vault_id}/recent",
    response_model=StandardResponse[List[FileRecordRead]],
    summary="获取 vault 最近写入的文件",
)
async def recent_files(
    vault_id: str,
    limit: int = Query(100, ge=1, le=1000),
    loader: SmartFileLoader = Depends(get_smart_file_loader),
):
    files = await loader.get_recent_files(vault_id, limit)
    return response_success(data=files)


# === Suggestions ===
@router.get(
    "/vaults/{vault_id}/suggestions",
    response_model=StandardResponse[List[str]],
    summary="文件名自动补全",
)
async def suggestions(
    vault_id: str,
    prefix: str = Query("", alias="q"),
    limit: int = Query(10, ge=1, le=50),
    loader: SmartFileLoader = Depends(get_smart_file_loader),
):
    names = await loader.get_suggestions(vault_id, prefix, limit)
    return response_success(data=names)


# === Reindex Vault ===
@router.post(
    "/vaults/{vault_id}/reindex",
    response_model=StandardResponse[dict],
    summary="重建整个 vault 的缓存和索引",
)
async def reindex_vault(vault_id: str, loader: SmartFileLoader = Depends(get_smart_file_loader)):
    count = await loader.reindex_vault(vault_id)
    return response_success(data={"vault_id": vault_id, "reindexed": count})


# === Remove Vault From Index ===
@router.delete(
    "/vaults/{vault_id}/index",
    response_model=StandardResponse[None],
    summary="从检索索引中移除整个 vault",
)
async def remove_vault_from_index(vault_id: str, loader: SmartFileLoader = Depends(get_smart_file_loader)):
    await loader.remove_vault_from_index(vault_id)
    return response_success(message="Vault removed from index")
