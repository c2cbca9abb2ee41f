"""账户路由：注册、登录与管理员账户管理"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from apk_shop import state
from apk_shop.models.schemas import AuthResponse, LoginRequest, RegisterRequest, UserInfo, UserUpdateRequest
from apk_shop.routers.deps import get_admin, get_caller
from apk_shop.services.access_gate import Caller

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/auth/register", response_model=AuthResponse)
async def register(request: RegisterRequest):
    return await run_in_threadpool(state.accounts.register, request.username, request.email, request.password)


@router.post("/auth/login", response_model=AuthResponse)
async def login(request: LoginRequest):
    return await run_in_threadpool(state.accounts.login, request.username, request.password)


@router.get("/auth/me", response_model=UserInfo)
async def me(caller: Caller = Depends(get_caller)):
    return await run_in_threadpool(state.accounts.get_user, caller.user_id)


@router.patch("/admin/users/{user_id}", response_model=UserInfo)
async def update_user(user_id: int, request: UserUpdateRequest, admin: Caller = Depends(get_admin)):
    """修改账户角色或启用状态（仅管理员）。"""
    return await run_in_threadpool(state.accounts.update_user, user_id, request.role, request.is_active)
