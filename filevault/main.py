from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from filevault.api.router import api_router
from filevault.config import get_app_config
from filevault.core.api_response import response_error, response_success
from filevault.core.background import BackgroundTaskRunner
from filevault.core.exceptions import BaseBusinessException
from filevault.core.logger import logger, setup_logging
from filevault.core.response_codes import ResponseCodeEnum
from filevault.infra.db.session import create_db_and_tables, create_engine, create_session_factory
from filevault.infra.redis.redis_factory import RedisFactory
from filevault.infra.search.elasticsearch_factory import ElasticsearchFactory
from filevault.services.file.file_metadata_cache import create_file_metadata_cache
from filevault.services.file.file_search_engine import create_file_search_engine
from filevault.services.file.file_store_adapter import FileStoreAdapter
from filevault.services.file.smart_file_loader import SmartFileLoader

settings = get_app_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 应用启动中，正在初始化资源...")
    setup_logging(settings.logging)

    # 初始化数据库
    engine = create_engine(settings.database)
    await create_db_and_tables(engine)

    # 缓存层与检索层：连接失败时自动降级为空实现
    redis_factory = RedisFactory()
    es_factory = ElasticsearchFactory()
    cache = await create_file_metadata_cache(settings.redis, redis_factory)
    search_engine = await create_file_search_engine(settings.elasticsearch, es_factory)

    task_runner = BackgroundTaskRunner(name="prefetch")
    app.state.file_loader = SmartFileLoader(
        store=FileStoreAdapter(create_session_factory(engine)),
        cache=cache,
        search_engine=search_engine,
        task_runner=task_runner,
        config=settings.loader,
    )
    logger.info(
        f"✅ 所有资源初始化完成 | cache: {cache.is_available}, search: {search_engine.is_available}"
    )

    yield

    # 应用关闭，释放资源
    await task_runner.shutdown()
    await redis_factory.close_client()
    await es_factory.close_client()
    await engine.dispose()
    logger.info("🛑 应用已关闭，所有连接已断开")


app = FastAPI(title="File Vault", lifespan=lifespan)


@app.exception_handler(BaseBusinessException)
async def business_exception_handler(request: Request, exc: BaseBusinessException):
    logger.warning(f"Business Exception | code: {exc.code}, message: {exc.message}, path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "data": None
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return response_error(
        ResponseCodeEnum.VALIDATION_ERROR,
        http_status=422,
        data=[{"loc": e["loc"], "msg": e["msg"], "type": e["type"]} for e in exc.errors()],
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled Exception | {repr(exc)} | path: {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "code": ResponseCodeEnum.SERVER_ERROR.code,
            "message": ResponseCodeEnum.SERVER_ERROR.message,
            "data": None
        }
    )


@app.get("/health", tags=["health"])
async def health(request: Request):
    loader = getattr(request.app.state, "file_loader", None)
    return response_success(data={
        "status": "ok",
        "cache": bool(loader and loader.cache.is_available),
        "search": bool(loader and loader.search_engine.is_available),
    })


origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.server.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "filevault.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )
