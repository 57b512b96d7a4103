# 安全工具（JWT）
# 只负责解析调用方身份，登录与令牌签发流程不在本服务内

import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional


class JWTManager:
    """
    JWT令牌管理器
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256",
                 access_token_expire_minutes: int = 1440):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(self, data: Dict[str, Any]) -> str:
        """
        创建访问令牌（测试与运维脚本使用）

        Args:
            data: 要编码的数据（user_id, is_admin）

        Returns:
            JWT令牌字符串
        """
        to_encode = data.copy()

        now = datetime.now(timezone.utc)
        expire = now + timedelta(minutes=self.access_token_expire_minutes)
        to_encode.update({"exp": expire, "iat": now})

        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        验证JWT令牌

        Args:
            token: JWT令牌字符串

        Returns:
            解码后的数据，验证失败返回None
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None
