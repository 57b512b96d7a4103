# 统一API响应格式工具

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def create_success_response(
    data: Any = None,
    message: str = "操作成功"
) -> Dict[str, Any]:
    """
    创建成功响应

    Args:
        data: 响应数据
        message: 成功消息

    Returns:
        标准格式的成功响应
    """
    return {
        "success": True,
        "data": data,
        "message": message,
        "timestamp": _timestamp()
    }


def create_error_response(
    error: str,
    data: Any = None
) -> Dict[str, Any]:
    """
    创建错误响应

    Args:
        error: 错误描述信息
        data: 可选的错误数据

    Returns:
        标准格式的错误响应
    """
    return {
        "success": False,
        "error": error,
        "data": data,
        "timestamp": _timestamp()
    }


def create_partial_response(
    data: Any,
    message: str,
    warnings: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    创建部分成功响应：主操作已生效，但附带操作失败

    Args:
        data: 已生效的数据
        message: 提示消息
        warnings: 失败的附带操作说明

    Returns:
        success 为真且 partial 为真的响应
    """
    response = create_success_response(data=data, message=message)
    response["partial"] = True
    response["warnings"] = warnings or []
    return response
