"""
Query helpers shared by the read endpoints.

Provides lookup-or-404 and the limit/offset/unpaged pagination used by the
list endpoints.
"""
from typing import Any, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import not_found, validation_error
from app.schemas.decision import Pagination

ModelType = TypeVar("ModelType")

DEFAULT_PAGE_SIZE = 100


async def get_or_404(db: AsyncSession, model: type[ModelType], id: Any, resource_name: str) -> ModelType:
    """
    Get a single record by primary key or raise 404.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id: Record ID
        resource_name: Name for error message

    Raises:
        HTTPError: 404 if the record does not exist
    """
    instance = await db.get(model, id)
    if instance is None:
        raise not_found(resource_name, details={"id": id})
    return instance


async def paginate(
    db: AsyncSession,
    stmt: Select,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    unpaged: bool = False,
) -> tuple[list[Any], Pagination | None, int]:
    """
    Run a select with limit/offset pagination.

    Returns:
        (items, pagination, total). ``pagination`` is None when unpaged.

    Raises:
        HTTPError: 400 if offset is past the end of the result set
    """
    total = (await db.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))).scalar_one()

    if unpaged:
        items = (await db.execute(stmt)).scalars().all()
        return list(items), None, total

    if offset > total:
        raise validation_error(
            f"Invalid parameter: offset ({offset}) cannot be greater than total items ({total})",
            details={"offset": offset, "total": total},
        )

    items = (await db.execute(stmt.limit(limit).offset(offset))).scalars().all()
    pagination = Pagination(page=offset // limit + 1, amount=len(items), total=total)
    return list(items), pagination, total
