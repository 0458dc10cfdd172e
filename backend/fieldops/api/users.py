"""User directory and account administration endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from fieldops.api.deps import AUTH_DEP, MANAGER_DEP, SESSION_DEP, SUPERADMIN_DEP
from fieldops.core.enums import UserStatus
from fieldops.core.roles import UserRole
from fieldops.db.pagination import paginate
from fieldops.schemas.common import OkResponse
from fieldops.schemas.pagination import DefaultLimitOffsetPage
from fieldops.schemas.users import UserCreate, UserRead, UserSelfUpdate, UserUpdate
from fieldops.services import users as user_service
from fieldops.services.sessions import close_user_sessions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext

router = APIRouter(prefix="/users", tags=["users"])
ROLE_QUERY = Query(default=None)
SEARCH_QUERY = Query(default=None, max_length=100)


def _to_read(items: Sequence[Any]) -> Sequence[Any]:
    return [UserRead.model_validate(item, from_attributes=True) for item in items]


@router.get("/me", response_model=UserRead)
async def get_me(auth: AuthContext = AUTH_DEP) -> UserRead:
    return UserRead.model_validate(auth.user, from_attributes=True)


@router.patch("/me", response_model=UserRead)
async def update_me(
    payload: UserSelfUpdate,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> UserRead:
    user = await user_service.update_profile(session, auth.user, payload)
    return UserRead.model_validate(user, from_attributes=True)


@router.get("/technicians", response_model=DefaultLimitOffsetPage[UserRead])
async def list_technicians(
    search: str | None = SEARCH_QUERY,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = MANAGER_DEP,
) -> LimitOffsetPage[UserRead]:
    """Technicians a manager can assign work to."""
    statement = user_service.users_statement(role=UserRole.TECHNICIAN, search=search).where(
        user_service.active_clause(),
    )
    return await paginate(session, statement, transformer=_to_read)


@router.get("", response_model=DefaultLimitOffsetPage[UserRead])
async def list_users(
    role: str | None = ROLE_QUERY,
    search: str | None = SEARCH_QUERY,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> LimitOffsetPage[UserRead]:
    statement = user_service.users_statement(
        role=user_service.parse_role_query(role),
        search=search,
    )
    return await paginate(session, statement, transformer=_to_read)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> UserRead:
    user = await user_service.create_user(session, payload)
    return UserRead.model_validate(user, from_attributes=True)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> UserRead:
    user = await user_service.get_user_or_404(session, user_id)
    return UserRead.model_validate(user, from_attributes=True)


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> UserRead:
    user = await user_service.get_user_or_404(session, user_id)
    user = await user_service.update_user(session, user, payload)
    if not user.is_active:
        await close_user_sessions(session, user.id)
    return UserRead.model_validate(user, from_attributes=True)


@router.delete("/{user_id}", response_model=OkResponse)
async def delete_user(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = SUPERADMIN_DEP,
) -> OkResponse:
    user = await user_service.get_user_or_404(session, user_id)
    await user_service.delete_user(session, user, actor_id=auth.user_id)
    return OkResponse()


@router.post("/{user_id}/activate", response_model=UserRead)
async def activate_user(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> UserRead:
    user = await user_service.get_user_or_404(session, user_id)
    user = await user_service.set_user_status(session, user, UserStatus.ACTIVE)
    return UserRead.model_validate(user, from_attributes=True)


@router.post("/{user_id}/deactivate", response_model=UserRead)
async def deactivate_user(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = SUPERADMIN_DEP,
) -> UserRead:
    user = await user_service.get_user_or_404(session, user_id)
    if user.id == auth.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot deactivate your own account",
        )
    user = await user_service.set_user_status(session, user, UserStatus.INACTIVE)
    await close_user_sessions(session, user.id)
    return UserRead.model_validate(user, from_attributes=True)

