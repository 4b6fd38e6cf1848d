# 导入所有表模型，确保 SQLModel.metadata 在建表前已注册全部表
from filevault.models.files.file_record import FileRecord, FileTag

__all__ = ["FileRecord", "FileTag"]
