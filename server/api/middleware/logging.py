# 请求日志中间件

import time
import uuid
import logging
from fastapi import FastAPI, Request
from typing import Dict, Any

logger = logging.getLogger(__name__)


def setup_logging_middleware(app: FastAPI, config: Dict[str, Any]):
    """
    设置请求日志中间件，沿用客户端传入的 X-Request-ID

    Args:
        app: FastAPI应用实例
        config: 配置字典
    """

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        start_time = time.time()

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"[{request_id}] ERROR - {str(e)} - "
                f"Time: {time.time() - start_time:.3f}s"
            )
            raise

        logger.info(
            f"[{request_id}] {response.status_code} - "
            f"Time: {time.time() - start_time:.3f}s"
        )
        response.headers["X-Request-ID"] = request_id
        return response
