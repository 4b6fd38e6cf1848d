from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Column, JSON
from sqlmodel import Field, Relationship, SQLModel

from filevault.models.base.timestamp_mixin import TimestampMixin


class FileRecord(TimestampMixin, table=True):
    """
    文件记录实体类，文件库的唯一可信数据源。
    缓存层与检索层中的数据都由此表派生。
    """
    __tablename__ = "file_record"

    id: str = Field(primary_key=True, max_length=64)

    # --- 位置 ---
    vault_id: str = Field(..., index=True, description="所属文件库")
    folder_id: Optional[str] = Field(None, index=True, description="父文件夹")
    path: str = Field(..., description="完整的可读路径")

    # --- 内容描述 ---
    name: str = Field(..., index=True)
    extension: str = Field("", index=True)
    mime_type: str = Field("application/octet-stream")
    size_bytes: int = Field(0, sa_type=BigInteger, description="文件大小（字节）")

    # --- 存储绑定 ---
    storage_provider: str = Field("")
    storage_bucket: str = Field("")
    storage_path: str = Field("")
    storage_key: str = Field("")
    checksum_md5: str = Field("")
    checksum_sha256: Optional[str] = None

    # 数据库列名为 metadata，属性名避开 SQLModel.metadata
    file_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False, default=dict),
    )

    # --- 版本 ---
    version: int = Field(1)
    is_latest: bool = Field(True)
    parent_file_id: Optional[str] = None

    # --- 缩略图 ---
    thumbnail_small: Optional[str] = None
    thumbnail_medium: Optional[str] = None
    thumbnail_large: Optional[str] = None

    owner_id: str = Field(..., index=True)
    is_public: bool = Field(False)
    is_safe: bool = Field(True)

    tags: List["FileTag"] = Relationship(
        back_populates="file",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class FileTag(SQLModel, table=True):
    __tablename__ = "file_tag"

    file_id: str = Field(foreign_key="file_record.id", primary_key=True)
    tag: str = Field(primary_key=True, index=True)

    file: Optional[FileRecord] = Relationship(back_populates="tags")
