from fastapi import APIRouter
from filevault.api.routes.file_vault import file_vault_router

api_router = APIRouter()

# 将所有路由配置定义在一个列表中
# 每个元素都是一个包含 router, prefix, 和 tags 的字典
routers_to_include = [
    {"router": file_vault_router.router, "prefix": "/file-vault", "tags": ["file-vault"]},
]

for route_config in routers_to_include:
    api_router.include_router(**route_config)
