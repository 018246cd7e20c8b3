import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("abstractflow")

_SENTRY_ENABLED = False
try:
    from app.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        logger.info("[sentry] enabled")
except Exception as e:
    # 中文注释: 零崩溃原则，Sentry 任何异常不得阻塞启动
    logger.warning("[sentry] init failed (ignored): %s", e)

from app.api.v1 import abstracts
from app.core.errors import ValidationError, WorkflowError
from app.core.middleware import ExceptionHandlerMiddleware
from app.services.workflow import get_workflow


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 中文注释: 启动时即构建工作流（配置错误尽早暴露），退出时关闭 store
    workflow = get_workflow()
    try:
        yield
    finally:
        workflow.close()


app = FastAPI(
    title="AbstractFlow API",
    description="Conference abstract review workflow backend",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "[HTTP] %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # 请求体 / 参数校验失败与业务校验失败统一为 400 validation_error
    details = [
        {"loc": list(err.get("loc") or []), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    err = ValidationError("Invalid request payload", details=jsonable_encoder(details))
    logger.info("[HTTP] %s %s -> 400 %s", request.method, request.url.path, err.message)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins。

    中文注释:
    - 本地默认: http://localhost:3000
    - 生产/预发: 通过 FRONTEND_ORIGIN 或 FRONTEND_ORIGINS 注入（逗号分隔）
    """
    origins: list[str] = []

    single = (os.environ.get("FRONTEND_ORIGIN") or "").strip()
    if single:
        origins.append(single.rstrip("/"))

    many = (os.environ.get("FRONTEND_ORIGINS") or "").strip()
    if many:
        for part in many.split(","):
            o = (part or "").strip().rstrip("/")
            if o:
                origins.append(o)

    if not origins:
        origins = ["http://localhost:3000"]

    # 去重保持顺序
    return list(dict.fromkeys(origins))


# === 中间件配置 ===
# 1. 跨域资源共享 (CORS) - 允许前端访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 2. 统一异常处理 + 请求日志
app.add_middleware(ExceptionHandlerMiddleware)

# === 路由注册 ===
app.include_router(abstracts.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "AbstractFlow API is running", "docs": "/docs"}
