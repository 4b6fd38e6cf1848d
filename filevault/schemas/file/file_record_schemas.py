from datetime import datetime, timezone
from typing import Optional, List, Dict, Union, Any, Iterable

from pydantic import BaseModel, Field, StrictBool, StrictInt, StrictFloat, field_validator, model_validator

from filevault.enums.query_enums import SortField, SortOrder


# metadata 中允许出现的值类型（封闭集合）：字符串 / 数字 / 布尔 / 日期 / 空值
MetadataValue = Union[StrictBool, StrictInt, StrictFloat, datetime, str, None]

# 检索层会把 metadata 中的这些 key 提升为独立的 keyword 子字段。
# 修改此列表时需要同步递增版本号并重建索引。
METADATA_SCHEMA_VERSION = 1
PROMOTED_METADATA_KEYS = ("project", "status", "priority")


def ensure_utc(value: datetime) -> datetime:
    """没有时区信息的时间一律按 UTC 处理。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_tags(tags: Optional[Iterable[Any]]) -> List[str]:
    """
    把数据库中不同形态的标签统一成字符串列表。
    支持 ["a", "b"]、[{"tag": "a"}] 以及带 tag 属性的 ORM 对象，去重并保持原有顺序。
    """
    if not tags:
        return []
    result: List[str] = []
    for item in tags:
        if isinstance(item, str):
            value = item
        elif isinstance(item, dict):
            value = item.get("tag")
        else:
            value = getattr(item, "tag", None)
        if value and value not in result:
            result.append(value)
    return result


class FileRecordRead(BaseModel):
    """
    文件元数据记录，是三层读取链路之间传递的基本单位。
    字段与数据库 file_record 表一一对应，tags 为反规范化后的标签列表。
    """
    id: str

    # --- 位置 ---
    vault_id: str
    folder_id: Optional[str] = None
    path: str

    # --- 内容描述 ---
    name: str
    extension: str = ""
    mime_type: str = "application/octet-stream"
    size_bytes: int = Field(0, ge=0, description="文件大小（字节），Python int 无精度损失")

    # --- 存储绑定，对本模块透明 ---
    storage_provider: str = ""
    storage_bucket: str = ""
    storage_path: str = ""
    storage_key: str = ""
    checksum_md5: str = ""
    checksum_sha256: Optional[str] = None

    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)

    # --- 版本 ---
    version: int = Field(1, ge=1)
    is_latest: bool = True
    parent_file_id: Optional[str] = None

    # --- 缩略图 ---
    thumbnail_small: Optional[str] = None
    thumbnail_medium: Optional[str] = None
    thumbnail_large: Optional[str] = None

    tags: List[str] = Field(default_factory=list)

    owner_id: str
    is_public: bool = False
    is_safe: bool = True

    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value):
        return normalize_tags(value)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_timestamps(self):
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        return self


class FileFilters(BaseModel):
    """
    文件列表的过滤条件。
    project / status 是 metadata 中最常用的两个字段，其它 metadata 字段放在 metadata 中做等值匹配。
    """
    folder_id: Optional[str] = None
    extension: Optional[str] = None
    mime_type: Optional[str] = None
    owner_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list, description="命中任意一个标签即可")
    min_size: Optional[int] = Field(None, ge=0)
    max_size: Optional[int] = Field(None, ge=0)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    project: Optional[str] = None
    status: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("date_from", "date_to")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def metadata_equals(self) -> Dict[str, str]:
        """合并 project / status 与其它 metadata 等值条件。"""
        conditions = dict(self.metadata)
        if self.project:
            conditions["project"] = self.project
        if self.status:
            conditions["status"] = self.status
        return conditions


class SortSpec(BaseModel):
    field: SortField  # 只允许白名单中的标量列
    order: SortOrder = SortOrder.DESC


class FileSearchParams(BaseModel):
    vault_id: str = Field(..., min_length=1)
    query: Optional[str] = None
    filters: FileFilters = Field(default_factory=FileFilters)
    page: int = Field(0, ge=0, description="页码，从 0 开始")
    page_size: int = Field(100, ge=1, description="超过配置的最大页大小时由加载器截断")
    sort: Optional[SortSpec] = None

    @property
    def offset(self) -> int:
        return self.page * self.page_size


class FacetBucket(BaseModel):
    key: str
    doc_count: int


class FileFacets(BaseModel):
    extensions: List[FacetBucket] = Field(default_factory=list)
    projects: List[FacetBucket] = Field(default_factory=list)
    statuses: List[FacetBucket] = Field(default_factory=list)
    tags: List[FacetBucket] = Field(default_factory=list)


class FileSearchResult(BaseModel):
    file_ids: List[str] = Field(default_factory=list)
    total: int = 0
    took: int = Field(0, description="检索耗时（毫秒）")
    facets: FileFacets = Field(default_factory=FileFacets)

    @classmethod
    def empty(cls) -> "FileSearchResult":
        return cls()


class PaginatedFiles(BaseModel):
    files: List[FileRecordRead]
    total: int
    page: int
    page_size: int
    has_more: bool
    facets: FileFacets = Field(default_factory=FileFacets)
    took: int = Field(0, description="整个读取流程的耗时（毫秒）")
