"""AccountService: registration, login and admin updates."""

import pytest

from apk_shop import state
from apk_shop.errors import NotFound, Unauthenticated, ValidationError
from apk_shop.models.schemas import UserRole


class TestRegister:
    def test_register_returns_token_and_api_key(self):
        auth = state.accounts.register("alice", "alice@example.com", "pw123456")

        assert auth.user.username == "alice"
        assert auth.user.role == UserRole.USER
        assert auth.user.is_active is True
        assert auth.api_key.startswith("user_")
        assert state.gate.authenticate_token(auth.token).user_id == auth.user.id

    @pytest.mark.parametrize(
        "username,email,password",
        [("", "a@b.c", "pw"), ("alice", " ", "pw"), ("alice", "a@b.c", "")],
    )
    def test_missing_fields(self, username, email, password):
        with pytest.raises(ValidationError):
            state.accounts.register(username, email, password)

    def test_duplicate_username(self):
        state.accounts.register("alice", "alice@example.com", "pw")
        with pytest.raises(ValidationError, match="已存在"):
            state.accounts.register("alice", "other@example.com", "pw")

    def test_duplicate_email(self):
        state.accounts.register("alice", "alice@example.com", "pw")
        with pytest.raises(ValidationError):
            state.accounts.register("alice2", "alice@example.com", "pw")


class TestLogin:
    def test_login_updates_last_login(self):
        state.accounts.register("alice", "alice@example.com", "pw")

        auth = state.accounts.login("alice", "pw")

        assert auth.user.last_login is not None
        assert state.accounts.get_user(auth.user.id).last_login is not None

    def test_wrong_password(self):
        state.accounts.register("alice", "alice@example.com", "pw")
        with pytest.raises(Unauthenticated):
            state.accounts.login("alice", "nope")

    def test_unknown_user(self):
        with pytest.raises(Unauthenticated):
            state.accounts.login("ghost", "pw")

    def test_inactive_user(self):
        auth = state.accounts.register("alice", "alice@example.com", "pw")
        state.accounts.update_user(auth.user.id, is_active=False)
        with pytest.raises(Unauthenticated):
            state.accounts.login("alice", "pw")


class TestUpdateUser:
    def test_promote_to_admin(self):
        auth = state.accounts.register("alice", "alice@example.com", "pw")
        info = state.accounts.update_user(auth.user.id, role=UserRole.ADMIN)
        assert info.role == UserRole.ADMIN
        assert state.accounts.login("alice", "pw").user.role == UserRole.ADMIN

    def test_missing_user(self):
        with pytest.raises(NotFound):
            state.accounts.update_user(404, is_active=False)


class TestEnsureAdmin:
    def test_creates_once(self):
        state.accounts.ensure_admin("admin", "admin@example.com", "admin123")
        state.accounts.ensure_admin("admin", "admin@example.com", "admin123")

        auth = state.accounts.login("admin", "admin123")
        assert auth.user.role == UserRole.ADMIN
        assert auth.api_key.startswith("admin_")
