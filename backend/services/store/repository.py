"""
Mosque repository: the persistence collaborator behind search and CRUD

Filter expressions from the search layer are rendered into SQLAlchemy Core
clauses over the ``mosques`` table. Prayer schedules live in JSONB, so
``prayer_times.fajr.hours`` becomes ``CAST(prayer_times #>> '{fajr,hours}' AS INTEGER)``.
"""
import json
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, or_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from ..common.errors import UpstreamError, ValidationError
from ..common.logger import get_logger
from ..common.models import MosqueCreate, MosqueRecord, MosqueUpdate
from ..search.filters import (
    EARTH_RADIUS_METERS, And, Contains, Equals, Exists, FilterExpression, MatchAll, Near, Or, Range,
    find_near,
)
from ..search.query_builder import Page, SortPolicy
from .tables import mosques

logger = get_logger("mosque_repository")

JSON_COLUMNS = ("prayer_times", "azan_times")
SCALAR_COLUMNS = ("name", "location", "imam", "verified", "longitude", "latitude")


class MosqueRepository:
    """Interface the API depends on"""

    async def find(self, expression: FilterExpression, page: Page, sort: SortPolicy,
                   verified: Optional[bool] = None) -> list[MosqueRecord]:
        raise NotImplementedError

    async def get(self, mosque_id: UUID) -> Optional[MosqueRecord]:
        raise NotImplementedError

    async def create(self, mosque: MosqueCreate, imam: str) -> MosqueRecord:
        raise NotImplementedError

    async def update(self, mosque_id: UUID, changes: MosqueUpdate) -> Optional[MosqueRecord]:
        raise NotImplementedError

    async def delete(self, mosque_id: UUID) -> bool:
        raise NotImplementedError

    async def set_verified(self, mosque_id: UUID) -> Optional[MosqueRecord]:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


# Expression rendering
def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _json_path(field: str):
    column, *path = field.split(".")
    return mosques.c[column][tuple(path)]


def _typed(field: str, sample: Any) -> ColumnElement:
    """Column expression for a field, cast to the type of the value it is compared with"""
    root = field.split(".", 1)[0]
    if root in SCALAR_COLUMNS and "." not in field:
        return mosques.c[field]
    if root not in JSON_COLUMNS or "." not in field:
        raise ValidationError(f"Unknown filter field: {field}")

    element = _json_path(field)
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    return element.as_string()


def distance_expression(near: Near) -> ColumnElement:
    """Great-circle distance in meters from the query point to each row"""
    cosine = (
        func.cos(func.radians(near.latitude)) * func.cos(func.radians(mosques.c.latitude)) *
        func.cos(func.radians(mosques.c.longitude) - func.radians(near.longitude)) +
        func.sin(func.radians(near.latitude)) * func.sin(func.radians(mosques.c.latitude))
    )
    # Rounding can push the cosine just past 1 for identical points
    return EARTH_RADIUS_METERS * func.acos(func.least(1.0, func.greatest(-1.0, cosine)))


def compile_filter(expression: FilterExpression) -> ColumnElement:
    """Render a filter expression as a SQLAlchemy boolean clause"""
    if isinstance(expression, MatchAll):
        return true()
    if isinstance(expression, And):
        return and_(*(compile_filter(op) for op in expression.operands))
    if isinstance(expression, Or):
        return or_(*(compile_filter(op) for op in expression.operands))
    if isinstance(expression, Exists):
        root = expression.field.split(".", 1)[0]
        if root in JSON_COLUMNS and "." in expression.field:
            kind = func.jsonb_typeof(_json_path(expression.field))
            return func.coalesce(kind, "null") != "null"
        return _typed(expression.field, None).isnot(None)
    if isinstance(expression, Equals):
        return _typed(expression.field, expression.value) == expression.value
    if isinstance(expression, Contains):
        pattern = f"%{_escape_like(expression.value)}%"
        return _typed(expression.field, "").ilike(pattern, escape="\\")
    if isinstance(expression, Range):
        bounds = expression.bounds()
        if not bounds:
            return true()
        column = _typed(expression.field, next(iter(bounds.values())))
        clauses = []
        if expression.gt is not None:
            clauses.append(column > expression.gt)
        if expression.gte is not None:
            clauses.append(column >= expression.gte)
        if expression.lt is not None:
            clauses.append(column < expression.lt)
        if expression.lte is not None:
            clauses.append(column <= expression.lte)
        return and_(*clauses)
    if isinstance(expression, Near):
        return distance_expression(expression) <= expression.radius_meters
    raise ValidationError(f"Unsupported filter node: {type(expression).__name__}")


def order_clauses(expression: FilterExpression, sort: SortPolicy) -> list:
    if sort is SortPolicy.DISTANCE:
        near = find_near(expression)
        if near is None:
            raise ValidationError("sort=distance requires a proximity filter")
        return [distance_expression(near).asc(), mosques.c.mosque_id]
    if sort is SortPolicy.NEWEST:
        return [mosques.c.created_at.desc(), mosques.c.mosque_id]
    return [func.lower(mosques.c.name).asc(), mosques.c.mosque_id]


# Row mapping
def row_to_record(row: Mapping[str, Any]) -> MosqueRecord:
    return MosqueRecord(
        mosque_id=row["mosque_id"],
        name=row["name"],
        location=row["location"],
        coordinates={"longitude": row["longitude"], "latitude": row["latitude"]},
        prayer_times=row["prayer_times"],
        azan_times=row["azan_times"],
        photos=row["photos"] or [],
        imam=row["imam"],
        verified=row["verified"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _values(changes: dict) -> dict:
    """Flatten API fields into column values"""
    values = dict(changes)
    coordinates = values.pop("coordinates", None)
    if coordinates is not None:
        values["longitude"] = coordinates["longitude"]
        values["latitude"] = coordinates["latitude"]
    return values


class SqlMosqueRepository(MosqueRepository):
    """PostgreSQL-backed repository bound to one session"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _upstream(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise UpstreamError(f"Mosque store unavailable during {operation}") from e

    async def find(self, expression, page, sort, verified=None):
        query = select(mosques).where(compile_filter(expression))
        if verified is not None:
            query = query.where(mosques.c.verified == verified)
        query = query.order_by(*order_clauses(expression, sort)).offset(page.skip).limit(page.limit)

        logger.info(f"Finding mosques: filter={json.dumps(expression.to_dict(), default=str)} "
                    f"skip={page.skip} limit={page.limit} sort={sort.value}")

        async with self._upstream("find"):
            result = await self.session.execute(query)
            rows = result.mappings().all()
        return [row_to_record(row) for row in rows]

    async def get(self, mosque_id):
        async with self._upstream("get"):
            result = await self.session.execute(select(mosques).where(mosques.c.mosque_id == mosque_id))
            row = result.mappings().first()
        return row_to_record(row) if row else None

    async def create(self, mosque, imam):
        values = _values(mosque.model_dump(mode="json", exclude={"imam"}, exclude_none=True))
        values.update(imam=imam, verified=False)
        async with self._upstream("create"):
            result = await self.session.execute(insert(mosques).values(**values).returning(*mosques.c))
            row = result.mappings().one()
            await self.session.commit()
        logger.info(f"Created mosque {row['name']}", extra={"mosque_id": row["mosque_id"], "user_id": imam})
        return row_to_record(row)

    async def update(self, mosque_id, changes):
        values = _values(changes.model_dump(mode="json", exclude_unset=True))
        if not values:
            return await self.get(mosque_id)
        values["updated_at"] = func.now()
        async with self._upstream("update"):
            result = await self.session.execute(
                update(mosques).where(mosques.c.mosque_id == mosque_id).values(**values).returning(*mosques.c)
            )
            row = result.mappings().first()
            await self.session.commit()
        return row_to_record(row) if row else None

    async def delete(self, mosque_id):
        async with self._upstream("delete"):
            result = await self.session.execute(
                delete(mosques).where(mosques.c.mosque_id == mosque_id).returning(mosques.c.mosque_id)
            )
            deleted = result.first() is not None
            await self.session.commit()
        return deleted

    async def set_verified(self, mosque_id):
        async with self._upstream("verify"):
            result = await self.session.execute(
                update(mosques)
                .where(mosques.c.mosque_id == mosque_id)
                .values(verified=True, updated_at=func.now())
                .returning(*mosques.c)
            )
            row = result.mappings().first()
            await self.session.commit()
        return row_to_record(row) if row else None

    async def ping(self):
        async with self._upstream("ping"):
            result = await self.session.execute(select(1))
            return result.scalar() == 1
