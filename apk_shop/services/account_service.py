"""Account Service - 注册、登录与账户管理"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from apk_shop.db.base import Database
from apk_shop.db.models import User
from apk_shop.errors import NotFound, StorageError, Unauthenticated, ValidationError
from apk_shop.models.schemas import AuthResponse, UserInfo, UserRole
from apk_shop.services.access_gate import AccessGate
from apk_shop.services.security import generate_api_key, hash_password, verify_password

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, database: Database, gate: AccessGate) -> None:
        self.database = database
        self.gate = gate

    def _auth_response(self, user: User) -> AuthResponse:
        return AuthResponse(
            token=self.gate.issue_token(user),
            api_key=user.api_key,
            user=UserInfo.model_validate(user),
        )

    def register(self, username: str, email: str, password: str) -> AuthResponse:
        """创建普通用户账户并签发令牌与 API key"""
        username = (username or "").strip()
        email = (email or "").strip()
        if not username or not email or not password:
            raise ValidationError("用户名、邮箱和密码均为必填项")

        try:
            with self.database.transaction() as session:
                existing = session.execute(
                    select(User.id).where(or_(User.username == username, User.email == email))
                ).first()
                if existing is not None:
                    raise ValidationError("用户名或邮箱已存在")
                user = User(
                    username=username,
                    email=email,
                    password_hash=hash_password(password),
                    role=UserRole.USER.value,
                    is_active=True,
                    api_key=generate_api_key("user"),
                )
                session.add(user)
                session.flush()
        except IntegrityError as e:
            raise ValidationError("用户名或邮箱已存在") from e
        except SQLAlchemyError as e:
            logger.exception("Failed to register user %s", username)
            raise StorageError() from e

        logger.info("Registered user %s (id=%s)", user.username, user.id)
        return self._auth_response(user)

    def login(self, username: str, password: str) -> AuthResponse:
        """校验密码，更新最后登录时间"""
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("用户名和密码均为必填项")

        try:
            with self.database.transaction() as session:
                user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
                if user is None or not user.is_active or not verify_password(password, user.password_hash):
                    raise Unauthenticated("用户名或密码错误")
                user.last_login = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            logger.exception("Failed to log in user %s", username)
            raise StorageError() from e

        return self._auth_response(user)

    def get_user(self, user_id: int) -> UserInfo:
        try:
            with self.database.session() as session:
                user = session.get(User, user_id)
        except SQLAlchemyError as e:
            logger.exception("Failed to load user %s", user_id)
            raise StorageError() from e
        if user is None:
            raise NotFound(f"用户 {user_id} 不存在", {"user_id": user_id})
        return UserInfo.model_validate(user)

    def update_user(
        self,
        user_id: int,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> UserInfo:
        """管理员修改角色或启用状态"""
        try:
            with self.database.transaction() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise NotFound(f"用户 {user_id} 不存在", {"user_id": user_id})
                if role is not None:
                    user.role = role.value
                if is_active is not None:
                    user.is_active = is_active
                info = UserInfo.model_validate(user)
        except SQLAlchemyError as e:
            logger.exception("Failed to update user %s", user_id)
            raise StorageError() from e

        logger.info("Updated user %s: role=%s active=%s", user_id, info.role.value, info.is_active)
        return info

    def ensure_admin(self, username: str, email: str, password: str) -> None:
        """启动时创建默认管理员（已存在则跳过）"""
        try:
            with self.database.transaction() as session:
                existing = session.execute(select(User.id).where(User.username == username)).first()
                if existing is not None:
                    return
                session.add(
                    User(
                        username=username,
                        email=email,
                        password_hash=hash_password(password),
                        role=UserRole.ADMIN.value,
                        is_active=True,
                        api_key=generate_api_key("admin"),
                    )
                )
        except SQLAlchemyError as e:
            logger.exception("Failed to create default admin %s", username)
            raise StorageError() from e
        logger.info("Created default admin account %s", username)
