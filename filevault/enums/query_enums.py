from enum import Enum


class SortOrder(str, Enum):
    """
    列表查询的排序方向。
    继承自 str 和 Enum，可以让成员在 API 中作为字符串值直接使用。
    """
    ASC = 'asc'
    DESC = 'desc'


class LoadPath(str, Enum):
    """一次分页读取实际走的是哪条链路，用于指标标签。"""
    INDEX = 'index'          # 检索层 -> 缓存层 -> 数据库
    DATABASE = 'database'    # 直接查询数据库的降级链路


class SortField(str, Enum):
    """允许客户端排序的字段，只包含数据库和索引中都存在的标量列。"""
    NAME = 'name'
    PATH = 'path'
    EXTENSION = 'extension'
    MIME_TYPE = 'mime_type'
    SIZE_BYTES = 'size_bytes'
    CREATED_AT = 'created_at'
    UPDATED_AT = 'updated_at'
