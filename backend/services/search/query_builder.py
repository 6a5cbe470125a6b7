"""
Mosque search: request parameters -> SearchFilter -> FilterExpression

``build_filter`` is pure and synchronous; it never talks to the database.
Callers parse and clamp raw parameters with ``parse_search_params`` first.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import ValidationError
from ..common.models import PrayerSlot, TimeOfDay
from .filters import (
    Contains, Equals, Exists, FilterExpression, MatchAll, Near, Or, And, Range, conjoin
)
from .time_window import DEFAULT_OFFSET_MINUTES, TimeWindow, compute_window, time_range

PAGE_SIZE = 20
MAX_PAGE = 10_000
DEFAULT_RADIUS_METERS = 5000
END_OF_DAY = "23:59"

AttributeMode = Literal["name", "location"]


class SortPolicy(str, Enum):
    NAME = "name"
    DISTANCE = "distance"
    NEWEST = "newest"


# Search filter variants
class GeoConstraint(BaseModel):
    """Point and radius, longitude first"""
    model_config = ConfigDict(frozen=True)

    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    radius_meters: float = Field(DEFAULT_RADIUS_METERS, gt=0)


class _SearchBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = Field(1, ge=1, le=MAX_PAGE)
    geo: Optional[GeoConstraint] = None
    sort: Optional[SortPolicy] = None


class _TextSearch(_SearchBase):
    query: str

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be empty")
        return v


class BrowseSearch(_SearchBase):
    """No search mode: list everything, optionally near a point"""
    by: Literal["all"] = "all"


class NameSearch(_TextSearch):
    by: Literal["name"] = "name"


class LocationSearch(_TextSearch):
    by: Literal["location"] = "location"


class CoordinateSearch(_SearchBase):
    """Proximity search, optionally narrowed by a name or location query"""
    by: Literal["coordinates"] = "coordinates"
    geo: GeoConstraint
    query: Optional[str] = None
    attribute_mode: AttributeMode = "name"

    @field_validator("query")
    @classmethod
    def blank_query_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class PrayerTimeSearch(_SearchBase):
    """Mosques holding ``prayer_name`` between ``start`` and ``end``"""
    by: Literal["prayerTime"] = "prayerTime"
    prayer_name: PrayerSlot
    start: TimeOfDay
    end: TimeOfDay

    @field_validator("prayer_name", mode="before")
    @classmethod
    def lower_prayer_name(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start, end=self.end)


SearchFilter = Annotated[
    Union[BrowseSearch, NameSearch, LocationSearch, CoordinateSearch, PrayerTimeSearch],
    Field(discriminator="by"),
]

_search_adapter = TypeAdapter(SearchFilter)


def make_search(**fields) -> SearchFilter:
    """Validate keyword fields into the matching SearchFilter variant"""
    try:
        return _search_adapter.validate_python(fields)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


# Filter construction
def prayer_field(slot: str, part: Optional[str] = None) -> str:
    return f"prayer_times.{slot}" if part is None else f"prayer_times.{slot}.{part}"


def prayer_window_clauses(slot: str, window: TimeWindow) -> Or:
    """
    Express ``start <= time <= end`` over separate hour and minute fields.

    Hours and minutes are stored as two integers, so the range becomes a
    disjunction over the boundary hours. A window that wraps past midnight
    is split into ``[start, 24:00)`` and ``[00:00, end]``.
    """
    hours, minutes = prayer_field(slot, "hours"), prayer_field(slot, "minutes")
    sh, sm = window.start.hours, window.start.minutes
    eh, em = window.end.hours, window.end.minutes

    start_hour_tail = And((Equals(hours, sh), Range(minutes, gte=sm)))
    end_hour_head = And((Equals(hours, eh), Range(minutes, lte=em)))

    if window.crosses_midnight:
        return Or((
            start_hour_tail,
            Range(hours, gt=sh),
            Range(hours, lt=eh),
            end_hour_head,
        ))

    if sh == eh:
        return Or((And((Equals(hours, sh), Range(minutes, gte=sm, lte=em))),))

    return Or((
        start_hour_tail,
        Range(hours, gt=sh, lt=eh),
        end_hour_head,
    ))


def build_filter(search: SearchFilter) -> FilterExpression:
    """Compose the single filter expression for a search"""
    if isinstance(search, NameSearch):
        attribute = Contains("name", search.query)
    elif isinstance(search, LocationSearch):
        attribute = Contains("location", search.query)
    elif isinstance(search, CoordinateSearch):
        attribute = Contains(search.attribute_mode, search.query) if search.query else None
    elif isinstance(search, PrayerTimeSearch):
        attribute = And((
            Exists(prayer_field(search.prayer_name)),
            prayer_window_clauses(search.prayer_name, search.window),
        ))
    elif isinstance(search, BrowseSearch):
        attribute = None
    else:
        raise ValidationError(f"Unsupported search mode: {type(search).__name__}")

    if search.geo is None:
        return attribute if attribute is not None else MatchAll()

    near = Near(search.geo.longitude, search.geo.latitude, search.geo.radius_meters)
    if attribute is None:
        return near
    return conjoin(attribute, near)


# Pagination and ordering
@dataclass(frozen=True)
class Page:
    skip: int
    limit: int


def paginate(page: int, page_size: int = PAGE_SIZE) -> Page:
    """Offset/limit for a 1-based page number; callers clamp with clamp_page first"""
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError(f"page must be a positive integer, got {page!r}")
    return Page(skip=(page - 1) * page_size, limit=page_size)


def clamp_page(raw: Union[str, int, float, None]) -> int:
    """
    Absent, unparsable or non-positive page numbers fall back to page 1.

    Pages past MAX_PAGE are capped; they lie beyond any real result set and
    would otherwise overflow the database offset.
    """
    if raw is None or raw == "":
        return 1
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 1
    if math.isnan(value) or value < 1:
        return 1
    if value > MAX_PAGE:
        return MAX_PAGE
    return int(value)


def resolve_sort(search: SearchFilter) -> SortPolicy:
    """Explicit sort if given; otherwise by distance for geo searches, else by name"""
    if search.sort is not None:
        if search.sort is SortPolicy.DISTANCE and search.geo is None:
            raise ValidationError("sort=distance requires lat and lng")
        return search.sort
    return SortPolicy.DISTANCE if search.geo is not None else SortPolicy.NAME


# Wire format
def _param(params: Mapping[str, str], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _float_param(params: Mapping[str, str], key: str) -> Optional[float]:
    value = _param(params, key)
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number, got {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{key} must be a finite number, got {value!r}")
    return number


def parse_search_params(params: Mapping[str, str], *,
                        default_radius: float = DEFAULT_RADIUS_METERS,
                        window_offset: int = DEFAULT_OFFSET_MINUTES,
                        default_time: Optional[str] = None) -> SearchFilter:
    """
    Turn request query parameters into a SearchFilter.

    Recognised keys: by, query, lat, lng, radius, prayerTime, timeStart,
    timeEnd, page, sort, attributeBy. ``default_time`` is injected when a
    prayerTime search arrives with no time at all; without it such a
    search is rejected.
    """
    by = _param(params, "by") or "all"
    fields: dict = {"by": by, "page": clamp_page(params.get("page"))}

    sort = _param(params, "sort")
    if sort is not None:
        fields["sort"] = sort

    lat, lng = _float_param(params, "lat"), _float_param(params, "lng")
    if (lat is None) != (lng is None):
        raise ValidationError("lat and lng must be given together")
    if lat is not None:
        radius = _float_param(params, "radius")
        fields["geo"] = {
            "longitude": lng,
            "latitude": lat,
            "radius_meters": radius if radius is not None else default_radius,
        }

    query = _param(params, "query")

    if by in ("name", "location"):
        fields["query"] = query or ""
    elif by == "coordinates":
        fields["query"] = query
        attribute_by = _param(params, "attributeBy")
        if attribute_by is not None:
            fields["attribute_mode"] = attribute_by
    elif by == "prayerTime":
        if query is None:
            raise ValidationError("prayerTime search needs the prayer name in query")
        fields["prayer_name"] = query
        window = _prayer_window(params, window_offset, default_time)
        fields["start"], fields["end"] = window.start, window.end

    return make_search(**fields)


def _prayer_window(params: Mapping[str, str], window_offset: int,
                   default_time: Optional[str]) -> TimeWindow:
    at = _param(params, "prayerTime")
    if at is not None:
        return compute_window(at, window_offset)

    time_start, time_end = _param(params, "timeStart"), _param(params, "timeEnd")
    if time_start is not None or time_end is not None:
        return time_range(time_start or "00:00", time_end or END_OF_DAY)

    if default_time is not None:
        return compute_window(default_time, window_offset)
    raise ValidationError("prayerTime search needs prayerTime or timeStart/timeEnd")


def search_to_params(search: SearchFilter) -> dict[str, str]:
    """Re-serialise a SearchFilter into query parameters that parse back to it"""
    params: dict[str, str] = {"page": str(search.page)}
    if search.by != "all":
        params["by"] = search.by
    if search.sort is not None:
        params["sort"] = search.sort.value
    if search.geo is not None:
        params["lat"] = repr(search.geo.latitude)
        params["lng"] = repr(search.geo.longitude)
        params["radius"] = repr(search.geo.radius_meters)

    if isinstance(search, (NameSearch, LocationSearch)):
        params["query"] = search.query
    elif isinstance(search, CoordinateSearch):
        if search.query is not None:
            params["query"] = search.query
        params["attributeBy"] = search.attribute_mode
    elif isinstance(search, PrayerTimeSearch):
        params["query"] = search.prayer_name
        params["timeStart"] = str(search.start)
        params["timeEnd"] = str(search.end)
    return params
