# filevault/core/exceptions/base_exception.py

from typing import Optional

from filevault.core.response_codes import ResponseCodeEnum


class BaseBusinessException(Exception):
    def __init__(
            self,
            code_enum: Optional[ResponseCodeEnum] = None,
            code: Optional[int] = None,
            status_code: int = 200,
            message: Optional[str] = None,
            extra: Optional[dict] = None,
    ):
        code_enum = code_enum or ResponseCodeEnum.SERVER_ERROR
        self.code = code if code is not None else code_enum.code
        self.message = message or code_enum.message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(self.message)

    def __str__(self):
        return f"[{self.code}] {self.message}"


class NotFoundException(BaseBusinessException):
    """
    当请求的资源不存在时抛出。
    """
    def __init__(self, message: str = "资源不存在"):
        super().__init__(ResponseCodeEnum.NOT_FOUND, status_code=404, message=message)
