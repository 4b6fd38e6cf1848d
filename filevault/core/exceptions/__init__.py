# filevault/core/exceptions/__init__.py

from .base_exception import (
    BaseBusinessException,
    NotFoundException,
)
from .file_vault_exceptions import (
    FileRecordNotFoundException,
    FileStoreException,
)

__all__ = [
    "BaseBusinessException",
    "NotFoundException",

    "FileRecordNotFoundException",
    "FileStoreException",
]
