"""Shared fixtures: every test runs against a fresh database and Blob Store."""

import io
import zipfile
from typing import Callable

import pytest

from apk_shop import state
from apk_shop.config import Settings
from apk_shop.models.schemas import AuthResponse, UserRole
from apk_shop.services.access_gate import Caller


@pytest.fixture(autouse=True)
def fresh_state(tmp_path):
    """Rebuild all services on a temp SQLite file and temp data directory."""
    original = state.settings
    settings = Settings(
        data_dir=str(tmp_path / "data"),
        database_url=f"sqlite:///{tmp_path / 'apk_shop.db'}",
        jwt_secret="test-secret",
        seed_admin=False,
    )
    state.configure(settings)
    state.database.create_all()

    yield settings

    state.database.dispose()
    state.configure(original)


@pytest.fixture
def apk_bytes() -> bytes:
    """A minimal valid APK (ZIP with AndroidManifest.xml)."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("AndroidManifest.xml", "<manifest/>")
    return buf.getvalue()


@pytest.fixture
def make_user() -> Callable[..., AuthResponse]:
    """Factory: register an account (optionally promoted to admin) and log it in."""

    def _make(username: str, role: UserRole = UserRole.USER, password: str = "secret-pass") -> AuthResponse:
        auth = state.accounts.register(username, f"{username}@example.com", password)
        if role != UserRole.USER:
            state.accounts.update_user(auth.user.id, role=role)
            auth = state.accounts.login(username, password)
        return auth

    return _make


def as_caller(auth: AuthResponse) -> Caller:
    return Caller(user_id=auth.user.id, username=auth.user.username, role=auth.user.role)


@pytest.fixture
def caller_of() -> Callable[[AuthResponse], Caller]:
    return as_caller
