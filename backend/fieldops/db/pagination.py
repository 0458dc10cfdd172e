"""Async pagination wrapper around `fastapi-pagination`'s SQLAlchemy extension."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi_pagination.ext.sqlalchemy import apaginate

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.sql import Select
    from sqlmodel.ext.asyncio.session import AsyncSession


async def paginate(
    session: AsyncSession,
    statement: Select[Any],
    *,
    transformer: Callable[[Sequence[Any]], Sequence[Any]] | None = None,
) -> Any:
    """Paginate `statement` using the limit/offset params of the current request."""
    return await apaginate(session, statement, transformer=transformer)
