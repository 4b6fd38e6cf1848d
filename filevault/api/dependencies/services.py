# filevault/api/dependencies/services.py
from fastapi import Request

from filevault.services.file.smart_file_loader import SmartFileLoader


def get_smart_file_loader(request: Request) -> SmartFileLoader:
    """SmartFileLoader 在应用启动时创建一次，挂在 app.state 上。"""
    return request.app.state.file_loader
