from enum import Enum


class ResponseCodeEnum(Enum):

    # === 通用响应码 ===
    SUCCESS = (0, "请求成功")
    VALIDATION_ERROR = (40001, "参数验证失败")
    NOT_FOUND = (40400, "资源不存在")
    SERVER_ERROR = (50000, "服务器内部错误")

    # === 文件库相关 ===
    FILE_NOT_FOUND = (40410, "文件不存在")
    FILE_STORE_UNAVAILABLE = (50310, "文件存储暂不可用")

    def __init__(self, code: int, message: str):
        self._code = code
        self._message = message

    @property
    def code(self):
        return self._code

    @property
    def message(self):
        return self._message
