"""AccessGate: credential resolution and the owner-or-admin predicate."""

from datetime import timedelta

import pytest

from apk_shop import state
from apk_shop.db.models import Package
from apk_shop.errors import Forbidden, Unauthenticated
from apk_shop.models.schemas import UserRole
from apk_shop.services.access_gate import AccessGate, Caller


class TestBearerToken:
    def test_claims_resolve_without_database(self, make_user):
        auth = make_user("alice")
        offline_gate = AccessGate(database=None, signer=state.gate.signer)

        caller = offline_gate.authenticate_token(auth.token)

        assert caller.user_id == auth.user.id
        assert caller.username == "alice"
        assert caller.role == UserRole.USER

    def test_admin_role_in_token(self, make_user):
        auth = make_user("root", role=UserRole.ADMIN)
        assert state.gate.authenticate_token(auth.token).is_admin

    def test_expired_token(self, make_user):
        auth = make_user("alice")
        token = state.gate.signer.sign(
            {"sub": str(auth.user.id), "username": "alice", "role": "user"},
            expires_delta=timedelta(minutes=-1),
        )
        with pytest.raises(Unauthenticated):
            state.gate.authenticate_token(token)

    def test_missing_subject(self):
        token = state.gate.signer.sign({"username": "ghost"})
        with pytest.raises(Unauthenticated):
            state.gate.authenticate_token(token)

    def test_empty_token(self):
        with pytest.raises(Unauthenticated):
            state.gate.authenticate_token("")


class TestApiKey:
    def test_valid_key(self, make_user):
        auth = make_user("alice")
        caller = state.gate.authenticate_api_key(auth.api_key)
        assert caller.user_id == auth.user.id
        assert caller.active is True

    def test_unknown_key(self):
        with pytest.raises(Unauthenticated):
            state.gate.authenticate_api_key("user_does_not_exist")

    def test_inactive_account(self, make_user):
        auth = make_user("alice")
        state.accounts.update_user(auth.user.id, is_active=False)
        with pytest.raises(Unauthenticated):
            state.gate.authenticate_api_key(auth.api_key)


class TestResolve:
    def test_bearer_preferred(self, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        caller = state.gate.resolve(f"Bearer {alice.token}", bob.api_key)
        assert caller.username == "alice"

    def test_api_key_fallback(self, make_user):
        bob = make_user("bob")
        assert state.gate.resolve(None, bob.api_key).username == "bob"

    def test_non_bearer_scheme(self, make_user):
        alice = make_user("alice")
        with pytest.raises(Unauthenticated):
            state.gate.resolve(f"Basic {alice.token}", None)

    def test_no_credentials(self):
        with pytest.raises(Unauthenticated):
            state.gate.resolve(None, None)


class TestAuthorization:
    def _package(self, owner_id: int) -> Package:
        return Package(id=1, user_id=owner_id, name="MyApp", version="1.0")

    def test_owner_can_mutate(self):
        caller = Caller(user_id=5, username="alice", role=UserRole.USER)
        assert AccessGate.can_mutate(caller, self._package(5))

    def test_admin_can_mutate(self):
        caller = Caller(user_id=9, username="root", role=UserRole.ADMIN)
        assert AccessGate.can_mutate(caller, self._package(5))

    def test_stranger_cannot_mutate(self):
        caller = Caller(user_id=6, username="bob", role=UserRole.USER)
        assert not AccessGate.can_mutate(caller, self._package(5))
        with pytest.raises(Forbidden):
            state.gate.require_mutate(caller, self._package(5))

    def test_require_admin(self):
        with pytest.raises(Forbidden):
            AccessGate.require_admin(Caller(user_id=6, username="bob", role=UserRole.USER))
        AccessGate.require_admin(Caller(user_id=9, username="root", role=UserRole.ADMIN))


class TestCallerDependency:
    @pytest.mark.asyncio
    async def test_get_caller_stores_identity_on_request(self, make_user):
        from starlette.requests import Request

        from apk_shop.routers.deps import get_caller

        auth = make_user("alice")
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})

        caller = await get_caller(request, authorization=f"Bearer {auth.token}", x_api_key=None)

        assert caller.user_id == auth.user.id
        assert request.state.caller == caller

    @pytest.mark.asyncio
    async def test_get_caller_without_credentials(self):
        from starlette.requests import Request

        from apk_shop.routers.deps import get_caller

        request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})
        with pytest.raises(Unauthenticated):
            await get_caller(request, authorization=None, x_api_key=None)
