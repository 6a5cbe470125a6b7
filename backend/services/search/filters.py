"""
Filter expression tree handed to the mosque repository

Leaves compare one document field (dotted path such as
``prayer_times.fajr.hours``); ``And`` / ``Or`` combine them. Every node can
evaluate itself against a mosque document and render itself for logs. The
SQL rendering lives with the repository.
"""
import math
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

EARTH_RADIUS_METERS = 6371000.0

_MISSING = object()


def resolve_path(doc: Mapping[str, Any], path: str) -> Any:
    """Look up a dotted path in a nested mapping, returning _MISSING when absent"""
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def haversine_meters(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance between two (longitude, latitude) points"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


class FilterExpression:
    """Base class for predicate nodes"""

    def matches(self, doc: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError

    def children(self) -> tuple["FilterExpression", ...]:
        return ()

    def walk(self) -> Iterator["FilterExpression"]:
        """Depth-first iteration over this node and its descendants"""
        yield self
        for child in self.children():
            yield from child.walk()


@dataclass(frozen=True)
class MatchAll(FilterExpression):
    """Matches every document; only produced for an explicit browse"""

    def matches(self, doc):
        return True

    def to_dict(self):
        return {"all": True}


@dataclass(frozen=True)
class And(FilterExpression):
    operands: tuple[FilterExpression, ...]

    def matches(self, doc):
        return all(op.matches(doc) for op in self.operands)

    def to_dict(self):
        return {"and": [op.to_dict() for op in self.operands]}

    def children(self):
        return self.operands


@dataclass(frozen=True)
class Or(FilterExpression):
    operands: tuple[FilterExpression, ...]

    def matches(self, doc):
        return any(op.matches(doc) for op in self.operands)

    def to_dict(self):
        return {"or": [op.to_dict() for op in self.operands]}

    def children(self):
        return self.operands


@dataclass(frozen=True)
class Exists(FilterExpression):
    """The field is populated (present and not null)"""
    field: str

    def matches(self, doc):
        value = resolve_path(doc, self.field)
        return value is not _MISSING and value is not None

    def to_dict(self):
        return {"exists": self.field}


@dataclass(frozen=True)
class Equals(FilterExpression):
    field: str
    value: Any

    def matches(self, doc):
        return resolve_path(doc, self.field) == self.value

    def to_dict(self):
        return {"eq": {self.field: self.value}}


@dataclass(frozen=True)
class Contains(FilterExpression):
    """Case-insensitive substring match on a text field"""
    field: str
    value: str

    def matches(self, doc):
        text = resolve_path(doc, self.field)
        if not isinstance(text, str):
            return False
        return self.value.casefold() in text.casefold()

    def to_dict(self):
        return {"contains": {self.field: self.value}}


@dataclass(frozen=True)
class Range(FilterExpression):
    """Numeric comparison; unset bounds are open"""
    field: str
    gt: Optional[int] = None
    gte: Optional[int] = None
    lt: Optional[int] = None
    lte: Optional[int] = None

    def matches(self, doc):
        value = resolve_path(doc, self.field)
        if value is _MISSING or value is None:
            return False
        if self.gt is not None and not value > self.gt:
            return False
        if self.gte is not None and not value >= self.gte:
            return False
        if self.lt is not None and not value < self.lt:
            return False
        if self.lte is not None and not value <= self.lte:
            return False
        return True

    def bounds(self) -> dict[str, int]:
        return {op: bound for op, bound in
                (("gt", self.gt), ("gte", self.gte), ("lt", self.lt), ("lte", self.lte))
                if bound is not None}

    def to_dict(self):
        return {"range": {self.field: self.bounds()}}


@dataclass(frozen=True)
class Near(FilterExpression):
    """The document's coordinate lies within ``radius_meters`` of the point"""
    longitude: float
    latitude: float
    radius_meters: float
    field: str = "coordinates"

    def distance_to(self, doc) -> Optional[float]:
        point = resolve_path(doc, self.field)
        if not isinstance(point, Mapping):
            return None
        return haversine_meters(self.longitude, self.latitude, point["longitude"], point["latitude"])

    def matches(self, doc):
        distance = self.distance_to(doc)
        return distance is not None and distance <= self.radius_meters

    def to_dict(self):
        return {"near": {self.field: [self.longitude, self.latitude], "max_distance": self.radius_meters}}


def conjoin(*operands: FilterExpression) -> FilterExpression:
    """
    AND the operands together, flattening nested conjunctions.

    A single operand is returned as-is, so callers never get a one-element
    ``And`` wrapper.
    """
    flat: list[FilterExpression] = []
    for op in operands:
        if isinstance(op, MatchAll):
            continue
        if isinstance(op, And):
            flat.extend(op.operands)
        else:
            flat.append(op)
    if not flat:
        return MatchAll()
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def find_near(expression: FilterExpression) -> Optional[Near]:
    """The geo-proximity leaf of an expression, if any"""
    for node in expression.walk():
        if isinstance(node, Near):
            return node
    return None
