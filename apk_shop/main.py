"""APK Shop Service - FastAPI 应用入口"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apk_shop.config import DEFAULT_JWT_SECRET, get_settings
from apk_shop.errors import ServiceError
from apk_shop.routers.analytics_router import access_log_middleware
from apk_shop.routers.analytics_router import router as analytics_router
from apk_shop.routers.apk_router import router as apk_router
from apk_shop.routers.auth_router import router as auth_router
from apk_shop.routers.deps import error_response

logger = logging.getLogger(__name__)

FEATURES = ["authentication", "versioning", "analytics", "api-access", "bulk-operations"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动时确保数据目录和数据表存在，并创建默认管理员"""
    from apk_shop import state

    logging.basicConfig(level=state.settings.log_level.upper())
    if state.settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("APK_SHOP_JWT_SECRET is not set; using the default secret")

    state.storage._ensure_directories()
    state.database.create_all()
    if state.settings.seed_admin:
        state.accounts.ensure_admin(
            state.settings.admin_username,
            state.settings.admin_email,
            state.settings.admin_password,
        )
    yield
    state.database.dispose()


app = FastAPI(
    title="APK Shop Service",
    description="APK 上传、版本管理、回滚与下载统计服务",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(access_log_middleware)

# 注册路由
app.include_router(auth_router)
app.include_router(apk_router)
app.include_router(analytics_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """业务异常 - 按错误类型映射状态码"""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求参数格式错误 - 与业务校验错误使用同一格式"""
    errors = [
        {"loc": [str(part) for part in err.get("loc", [])], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]
    return error_response(400, "VALIDATION_ERROR", "请求参数无效", {"errors": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """全局异常处理器 - 统一错误响应格式"""
    logger.exception("Unhandled exception: %s", exc)
    return error_response(500, "INTERNAL_ERROR", "服务器内部错误")


@app.get("/health")
async def health_check():
    return {"status": "ok", "features": FEATURES}
