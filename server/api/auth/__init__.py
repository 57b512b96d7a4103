# 认证模块：从 Bearer 令牌识别调用者

from .dependencies import (
    config, jwt_manager, get_database, get_scheduling_config, get_current_user, get_admin_user
)
from .models import TokenData

__all__ = [
    "config",
    "jwt_manager",
    "get_database",
    "get_scheduling_config",
    "get_current_user",
    "get_admin_user",
    "TokenData"
]
