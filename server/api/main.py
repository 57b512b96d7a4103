# FastAPI主应用

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse

from utils.logger import setup_logging
from utils.response import create_error_response, create_partial_response
from api.middleware import setup_middleware
from api.auth import config, get_database
from db.manager import DatabaseManager
from scheduling.errors import (
    ScheduleError, InvalidTransitionError, InvalidRecurrenceError, InvalidWeekdayError,
    RecordNotFoundError, OwnershipError, ConcurrentModificationError, PartialCancellationError
)

# 导入所有路由
from api.recurring_orders import recurring_orders_router
from api.subscriptions import subscriptions_router
from api.admin import admin_router

# 设置日志
setup_logging(config.config)
logger = logging.getLogger(__name__)

# 排期异常对应的HTTP状态码，按顺序匹配
SCHEDULE_ERROR_STATUS = [
    (InvalidTransitionError, 409),
    (ConcurrentModificationError, 409),
    (InvalidRecurrenceError, 400),
    (InvalidWeekdayError, 400),
    (RecordNotFoundError, 404),
    (OwnershipError, 403),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("周期配送排期服务启动中...")
    logger.info(f"环境: {config.env}")

    db_path = config.get_database_config()["path"]
    if db_path != ':memory:':
        with DatabaseManager(db_path) as db:
            db.initialize_schema()

    yield

    logger.info("周期配送排期服务关闭中...")


# 创建FastAPI应用
app = FastAPI(
    title=config.config['app']['name'],
    version=config.config['app']['version'],
    description=config.config['app']['description'],
    debug=config.config['app']['debug'],
    lifespan=lifespan
)

setup_middleware(app, config.config)

app.include_router(recurring_orders_router, tags=["周期订单"])
app.include_router(subscriptions_router, tags=["订阅"])
app.include_router(admin_router, tags=["管理员"])


# 全局异常处理器
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP异常处理"""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail)
    )


@app.exception_handler(ScheduleError)
async def schedule_exception_handler(request: Request, exc: ScheduleError):
    """
    排期异常处理

    部分取消视为成功（取消已生效），其余按异常类型映射状态码
    """
    if isinstance(exc, PartialCancellationError):
        data = dict(exc.state)
        logger.warning(f"{request.method} {request.url.path} 部分成功: {str(exc)}")
        return JSONResponse(
            status_code=200,
            content=create_partial_response(
                data=data,
                message=data.pop("message", "已取消"),
                warnings=[str(exc)]
            )
        )

    status_code = 400
    for error_type, code in SCHEDULE_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    detail = {"error_type": type(exc).__name__, "retryable": exc.retryable}
    if isinstance(exc, InvalidRecurrenceError):
        detail["errors"] = exc.errors

    logger.warning(f"{request.method} {request.url.path} 排期操作失败: {str(exc)}")
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(str(exc), data=detail)
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """业务参数错误"""
    logger.warning(f"{request.method} {request.url.path} 参数错误: {str(exc)}")
    return JSONResponse(
        status_code=400,
        content=create_error_response(str(exc))
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """通用异常处理"""
    logger.error(f"未处理的异常: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=create_error_response("服务器内部错误")
    )


@app.get("/health")
async def health_check(db: DatabaseManager = Depends(get_database)):
    """健康检查端点，包含核心表检查"""
    try:
        db.check_integrity()
    except RuntimeError as e:
        logger.error(f"健康检查失败: {str(e)}")
        raise HTTPException(status_code=503, detail="Service unhealthy")

    return {
        "status": "healthy",
        "version": config.config['app']['version'],
        "environment": config.env
    }


if __name__ == "__main__":
    import uvicorn

    server_config = config.config['server']

    uvicorn.run(
        "api.main:app",
        host=server_config.get('host', '127.0.0.1'),
        port=server_config.get('port', 8000),
        reload=server_config.get('reload', False),
        workers=1 if server_config.get('reload', False) else server_config.get('workers', 1),
        log_level="debug" if config.config['app']['debug'] else "info"
    )
