"""Access Gate - 凭据校验与授权判定"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from apk_shop.db.base import Database
from apk_shop.db.models import Package, User
from apk_shop.errors import Forbidden, StorageError, Unauthenticated
from apk_shop.models.schemas import UserRole
from apk_shop.services.security import TokenSigner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """已认证的调用方身份"""

    user_id: int
    username: str
    role: UserRole
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AccessGate:
    """把请求凭据（Bearer 令牌或 API key）解析为 Caller，并集中做授权判定。"""

    def __init__(self, database: Database, signer: TokenSigner) -> None:
        self.database = database
        self.signer = signer

    def issue_token(self, user: User) -> str:
        return self.signer.sign({"sub": str(user.id), "username": user.username, "role": user.role})

    def authenticate_token(self, token: str) -> Caller:
        """校验令牌并直接从 claims 中取身份，不查询数据库。"""
        if not token:
            raise Unauthenticated("缺少访问令牌")
        claims = self.signer.verify(token)
        try:
            return Caller(
                user_id=int(claims["sub"]),
                username=str(claims.get("username", "")),
                role=UserRole(claims.get("role", UserRole.USER.value)),
            )
        except (KeyError, ValueError) as e:
            raise Unauthenticated("令牌内容无效") from e

    def authenticate_api_key(self, api_key: str) -> Caller:
        if not api_key:
            raise Unauthenticated("缺少 API key")
        try:
            with self.database.session() as session:
                user = session.execute(select(User).where(User.api_key == api_key)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.exception("Failed to look up API key")
            raise StorageError() from e
        if user is None or not user.is_active:
            raise Unauthenticated("API key 无效")
        return Caller(
            user_id=user.id,
            username=user.username,
            role=UserRole(user.role),
            active=user.is_active,
        )

    def resolve(self, authorization: Optional[str], api_key: Optional[str]) -> Caller:
        """按 Bearer 令牌优先、API key 其次的顺序解析调用方。"""
        if authorization:
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() != "bearer":
                raise Unauthenticated("仅支持 Bearer 令牌")
            return self.authenticate_token(token.strip())
        if api_key:
            return self.authenticate_api_key(api_key)
        raise Unauthenticated("需要访问令牌或 API key")

    @staticmethod
    def can_mutate(caller: Caller, package: Package) -> bool:
        """只有所有者或管理员可以查看版本链、回滚和删除。"""
        return caller.is_admin or package.user_id == caller.user_id

    def require_mutate(self, caller: Caller, package: Package) -> None:
        if not self.can_mutate(caller, package):
            raise Forbidden("无权操作该 APK", {"apk_id": package.id})

    @staticmethod
    def require_admin(caller: Caller) -> None:
        if not caller.is_admin:
            raise Forbidden("需要管理员权限")
