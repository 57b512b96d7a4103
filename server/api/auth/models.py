# 认证相关的数据模型

from typing import Optional
from pydantic import BaseModel


class TokenData(BaseModel):
    """JWT Token数据模型"""
    user_id: int
    is_admin: bool = False
    exp: Optional[int] = None  # 过期时间戳
