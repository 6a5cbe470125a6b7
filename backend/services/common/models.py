"""
Pydantic models for the Masjid Finder backend
"""
import re
from datetime import datetime
from functools import total_ordering
from typing import Optional, Literal, Any
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


# Enums
PrayerSlot = Literal["fajr", "zohar", "asr", "maghrib", "isha", "juma", "eidulfitr", "eidulazha"]
Role = Literal["guest", "imam", "admin"]

MANDATORY_SLOTS = ("fajr", "zohar", "asr", "maghrib", "isha")
OPTIONAL_SLOTS = ("juma", "eidulfitr", "eidulazha")
ALL_SLOTS = MANDATORY_SLOTS + OPTIONAL_SLOTS

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


# Time models
@total_ordering
class TimeOfDay(BaseModel):
    """A wall-clock time of day, ordered by minute of day"""
    model_config = ConfigDict(frozen=True)

    hours: int = Field(..., ge=0, le=23)
    minutes: int = Field(..., ge=0, le=59)

    @model_validator(mode="before")
    @classmethod
    def from_string(cls, data: Any) -> Any:
        # "HH:MM" strings are accepted wherever a time is expected
        if isinstance(data, str):
            match = TIME_PATTERN.match(data.strip())
            if not match:
                raise ValueError(f"Invalid time {data!r}: expected HH:MM between 00:00 and 23:59")
            return {"hours": int(match.group(1)), "minutes": int(match.group(2))}
        return data

    @classmethod
    def parse(cls, value: str) -> "TimeOfDay":
        """Parse an ``H:MM`` or ``HH:MM`` string"""
        if not isinstance(value, str):
            raise ValidationError(f"Time must be an HH:MM string, got {value!r}")
        match = TIME_PATTERN.match(value.strip())
        if not match:
            raise ValidationError(f"Invalid time {value!r}: expected HH:MM between 00:00 and 23:59")
        return cls(hours=int(match.group(1)), minutes=int(match.group(2)))

    @classmethod
    def of(cls, hours: int, minutes: int) -> "TimeOfDay":
        """Build a time, raising ValidationError for out-of-range values"""
        try:
            return cls(hours=hours, minutes=minutes)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid time {hours}:{minutes}: {e.errors()[0]['msg']}") from e

    @property
    def minute_of_day(self) -> int:
        return self.hours * 60 + self.minutes

    # PrayerTime and TimeOfDay compare by value
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day == other.minute_of_day

    def __hash__(self) -> int:
        return hash(self.minute_of_day)

    def __lt__(self, other: "TimeOfDay") -> bool:
        if not isinstance(other, TimeOfDay):
            return NotImplemented
        return self.minute_of_day < other.minute_of_day

    def __str__(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}"


class PrayerTime(TimeOfDay):
    """A single daily occurrence (azan or iqamah) of a prayer slot"""


class PrayerSchedule(BaseModel):
    """Iqamah times; the five daily prayers are mandatory"""
    fajr: PrayerTime
    zohar: PrayerTime
    asr: PrayerTime
    maghrib: PrayerTime
    isha: PrayerTime
    juma: Optional[PrayerTime] = None
    eidulfitr: Optional[PrayerTime] = None
    eidulazha: Optional[PrayerTime] = None

    def observed(self) -> dict[str, PrayerTime]:
        """Slots this mosque actually observes, in canonical order"""
        return {slot: getattr(self, slot) for slot in ALL_SLOTS if getattr(self, slot) is not None}


class AzanSchedule(BaseModel):
    """Azan times; every slot is optional"""
    fajr: Optional[PrayerTime] = None
    zohar: Optional[PrayerTime] = None
    asr: Optional[PrayerTime] = None
    maghrib: Optional[PrayerTime] = None
    isha: Optional[PrayerTime] = None
    juma: Optional[PrayerTime] = None
    eidulfitr: Optional[PrayerTime] = None
    eidulazha: Optional[PrayerTime] = None


# Location models
class Coordinate(BaseModel):
    """A point, longitude first"""
    model_config = ConfigDict(frozen=True)

    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)

    @model_validator(mode="before")
    @classmethod
    def from_pair(cls, data: Any) -> Any:
        # [lng, lat] pairs keep the longitude-first convention
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("coordinates must be a [longitude, latitude] pair")
            return {"longitude": data[0], "latitude": data[1]}
        return data

    def as_pair(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)


# Mosque models
class MosqueBase(BaseModel):
    """Fields an imam or admin submits for a mosque"""
    name: str = Field(..., min_length=1, max_length=300)
    location: str = Field(..., min_length=1, max_length=500)
    coordinates: Coordinate
    prayer_times: PrayerSchedule
    azan_times: Optional[AzanSchedule] = None
    photos: list[str] = Field(default_factory=list)


class MosqueCreate(MosqueBase):
    """Create payload; the owning imam comes from the caller's identity"""
    imam: Optional[str] = None


class MosqueUpdate(BaseModel):
    """Partial update payload"""
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    location: Optional[str] = Field(None, min_length=1, max_length=500)
    coordinates: Optional[Coordinate] = None
    prayer_times: Optional[PrayerSchedule] = None
    azan_times: Optional[AzanSchedule] = None
    photos: Optional[list[str]] = None

    @field_validator("name", "location", "coordinates", "prayer_times", "photos")
    @classmethod
    def not_null(cls, v: Any) -> Any:
        # Omit a field to leave it unchanged; only azan_times may be cleared
        if v is None:
            raise ValueError("field cannot be null")
        return v


class MosqueRecord(MosqueBase):
    """Canonical mosque model (from database)"""
    mosque_id: UUID
    imam: str
    verified: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# API response models
class MosquesResponse(BaseModel):
    """Search response"""
    version: str = "1.0"
    success: bool = True
    page: int
    count: int
    search: dict[str, str]
    items: list[MosqueRecord]


class MosqueResponse(BaseModel):
    """Single mosque response"""
    success: bool = True
    mosque: MosqueRecord


class ActionResponse(BaseModel):
    """Outcome of a write that returns no record"""
    success: bool = True
    mosque_id: UUID
    message: str


class NextPrayerResponse(BaseModel):
    """Next prayer at a mosque"""
    mosque_id: UUID
    slot: PrayerSlot
    iqamah: str
    azan: Optional[str] = None
    is_tomorrow: bool
    as_of: str


class TimeWindowResponse(BaseModel):
    """Search window derived from a single time"""
    start: str
    end: str
    crosses_midnight: bool
    offset_minutes: int
