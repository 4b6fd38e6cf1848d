from typing import Optional

from filevault.core.exceptions.base_exception import BaseBusinessException, NotFoundException
from filevault.core.response_codes import ResponseCodeEnum


class FileRecordNotFoundException(NotFoundException):
    def __init__(self, file_id: str):
        super().__init__(message=f"文件 {file_id} 不存在")
        self.code = ResponseCodeEnum.FILE_NOT_FOUND.code
        self.extra = {"file_id": file_id}


class FileStoreException(BaseBusinessException):
    """
    持久化存储（数据库）读取失败。
    这是读取链路中唯一会向调用方抛出的错误：缓存层和检索层的失败都会被吞掉。
    """
    def __init__(self, message: Optional[str] = None, extra: Optional[dict] = None):
        super().__init__(
            ResponseCodeEnum.FILE_STORE_UNAVAILABLE,
            status_code=503,
            message=message,
            extra=extra,
        )
