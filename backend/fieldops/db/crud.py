"""Small write helpers shared by services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import delete, update
from sqlmodel import SQLModel

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

ModelT = TypeVar("ModelT", bound=SQLModel)


async def save(
    session: AsyncSession,
    obj: ModelT,
    *,
    commit: bool = True,
    refresh: bool = True,
) -> ModelT:
    """Add `obj` to the session, then commit or flush it."""
    session.add(obj)
    if commit:
        await session.commit()
        if refresh:
            await session.refresh(obj)
    else:
        await session.flush()
    return obj


def patch(obj: ModelT, updates: dict[str, Any]) -> ModelT:
    """Apply `updates` in place, skipping keys the model does not define."""
    for key, value in updates.items():
        if key in type(obj).model_fields:
            setattr(obj, key, value)
    return obj


async def delete_where(
    session: AsyncSession,
    model: type[SQLModel],
    *criteria: Any,
    commit: bool = True,
) -> int:
    """Bulk-delete rows of `model` matching `criteria`; returns the row count."""
    result = await session.exec(delete(model).where(*criteria))  # type: ignore[call-overload]
    if commit:
        await session.commit()
    return int(result.rowcount or 0)


async def update_where(
    session: AsyncSession,
    model: type[SQLModel],
    *criteria: Any,
    values: dict[str, Any],
    commit: bool = True,
) -> int:
    """Bulk-update rows of `model` matching `criteria`; returns the row count."""
    statement = update(model).where(*criteria).values(**values)
    result = await session.exec(statement)  # type: ignore[call-overload]
    if commit:
        await session.commit()
    return int(result.rowcount or 0)
