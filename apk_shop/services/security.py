"""密码哈希、令牌签名与 API key 生成"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from jose import JWTError, jwt

from apk_shop.errors import Unauthenticated


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def generate_api_key(prefix: str = "user") -> str:
    return f"{prefix}_{secrets.token_urlsafe(32)}"


class TokenSigner:
    """签发和校验有时效的 JWT 访问令牌"""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_minutes: int = 60) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def sign(self, claims: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        payload = dict(claims)
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=self.expire_minutes))
        payload["exp"] = expire
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """校验签名和过期时间，返回 claims。

        Raises:
            Unauthenticated: 令牌无效或已过期
        """
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise Unauthenticated("令牌无效或已过期") from e
