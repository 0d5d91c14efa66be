"""
api/routes/v1/roles.py -- Read-only role and permission catalog.

Routes:
  GET /api/v1/roles         -- every role with its permissions (permission "role:read")
  GET /api/v1/permissions   -- every permission (role ADMIN)

Assignments are managed with the CLI (main.py), never over HTTP.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from api.models import PermissionResponse, RoleResponse
from auth.dependencies import require_permissions, require_roles
from auth.store import UserStore

router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse], dependencies=[Depends(require_permissions("role:read"))])
async def list_roles(request: Request) -> list[RoleResponse]:
    user_store: UserStore = request.app.state.user_store
    roles = await asyncio.to_thread(user_store.list_roles)
    return [RoleResponse.from_domain(r) for r in roles]


@router.get("/permissions", response_model=list[PermissionResponse], dependencies=[Depends(require_roles("ADMIN"))])
async def list_permissions(request: Request) -> list[PermissionResponse]:
    user_store: UserStore = request.app.state.user_store
    permissions = await asyncio.to_thread(user_store.list_permissions)
    return [PermissionResponse.from_domain(p) for p in permissions]
