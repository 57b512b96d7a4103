# 接口公共依赖：数据库连接、排期配置、当前用户

import logging
from typing import Any, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .models import TokenData
from db.manager import DatabaseManager
from db.supporting_operations import SupportingOperations
from utils.config import Config
from utils.security import JWTManager

logger = logging.getLogger(__name__)

config = Config()
security = HTTPBearer(auto_error=False)
jwt_manager = JWTManager(
    secret_key=config.get('auth.jwt_secret_key'),
    algorithm=config.get('auth.jwt_algorithm', 'HS256'),
    access_token_expire_minutes=config.get('auth.access_token_expire_minutes', 1440)
)


def get_database():
    """获取数据库连接（每个请求一个连接）"""
    db_config = config.get_database_config()
    db_manager = DatabaseManager(db_config["path"], auto_connect=True)
    try:
        yield db_manager
    finally:
        db_manager.close()


def get_scheduling_config() -> Dict[str, Any]:
    """获取排期配置"""
    return config.get_scheduling_config()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: DatabaseManager = Depends(get_database)
) -> TokenData:
    """获取当前用户信息，管理员身份以数据库为准"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="缺少认证令牌"
        )

    payload = jwt_manager.verify_token(credentials.credentials)
    if not payload or "user_id" not in payload:
        logger.warning("用户认证失败: 令牌无效或已过期")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="认证失败，请重新登录"
        )

    user_info = SupportingOperations(db).get_user_by_id(payload["user_id"])
    if not user_info or user_info["status"] != "active":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在或已被禁用"
        )

    return TokenData(
        user_id=user_info["user_id"],
        is_admin=bool(user_info["is_admin"]),
        exp=payload.get("exp")
    )


def get_admin_user(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    """获取管理员用户（仅管理员可访问）"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="需要管理员权限"
        )
    return current_user
