"""Query-manager base class shared by all table models.

`Model.objects` returns a small chainable query builder so services read as
`await Task.objects.filter_by(project_id=pid).all(session)` instead of
hand-assembling `select()` statements everywhere.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar

from sqlalchemy import Column, func
from sqlalchemy import Enum as SAEnum
from sqlmodel import SQLModel, col, select

from fieldops.core.time import utcnow

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound="QueryModel")


class QuerySet(Generic[ModelT]):
    """Immutable wrapper around a `select()` statement for one model."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT]) -> None:
        self.model = model
        self.statement = statement

    def _clone(self, statement: SelectOfScalar[ModelT]) -> QuerySet[ModelT]:
        return QuerySet(self.model, statement)

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.where(*criteria))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.order_by(*clauses))

    def limit(self, count: int) -> QuerySet[ModelT]:
        return self._clone(self.statement.limit(count))

    def for_update(self) -> QuerySet[ModelT]:
        """Lock matching rows and overwrite instances the session already holds."""
        return self._clone(
            self.statement.with_for_update().execution_options(populate_existing=True),
        )

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement)).first()

    async def count(self, session: AsyncSession) -> int:
        statement = select(func.count()).select_from(self.statement.subquery())
        return int((await session.exec(statement)).one())


class ModelManager(Generic[ModelT]):
    """Entry point for building queries against `model`."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def by_id(self, obj_id: object) -> QuerySet[ModelT]:
        return self.filter(col(self.model.id) == obj_id)  # type: ignore[attr-defined]

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self.all().filter_by(**kwargs)


class _ManagerDescriptor:
    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)


def enum_column(enum_type: type[Enum], *, index: bool = False) -> Column[Any]:
    """Column storing enum *values* (not names) and loading enum members back."""
    return Column(
        SAEnum(
            enum_type,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            validate_strings=True,
            length=32,
        ),
        nullable=False,
        index=index,
    )


class QueryModel(SQLModel):
    """SQLModel base exposing `Model.objects` query helpers."""

    objects: ClassVar[_ManagerDescriptor] = _ManagerDescriptor()

    def touch(self) -> Self:
        """Stamp `updated_at` when the model has one."""
        if hasattr(self, "updated_at"):
            self.updated_at = utcnow()
        return self
