"""
pytest configuration for Masjid Finder tests
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest

# Add repository root to path so `backend.services...` imports work without installing
repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

from backend.services.common.models import MosqueRecord  # noqa: E402
from backend.services.search.filters import find_near  # noqa: E402
from backend.services.search.query_builder import SortPolicy  # noqa: E402
from backend.services.store.repository import MosqueRepository  # noqa: E402

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def prayer(hours, minutes):
    return {"hours": hours, "minutes": minutes}


def make_mosque(name, location="London", lng=-0.09, lat=51.5, verified=True, imam="imam-1",
                juma=None, fajr=(5, 30), zohar=(13, 15), asr=(16, 30), maghrib=(18, 45), isha=(20, 30),
                azan=None, age_days=0):
    prayer_times = {
        "fajr": prayer(*fajr),
        "zohar": prayer(*zohar),
        "asr": prayer(*asr),
        "maghrib": prayer(*maghrib),
        "isha": prayer(*isha),
    }
    if juma is not None:
        prayer_times["juma"] = prayer(*juma)
    created = BASE_TIME - timedelta(days=age_days)
    return MosqueRecord(
        mosque_id=uuid4(),
        name=name,
        location=location,
        coordinates={"longitude": lng, "latitude": lat},
        prayer_times=prayer_times,
        azan_times=azan,
        photos=[],
        imam=imam,
        verified=verified,
        created_at=created,
        updated_at=created,
    )


class InMemoryMosqueRepository(MosqueRepository):
    """Repository fake that evaluates filter expressions in Python"""

    def __init__(self, mosques=()):
        self.mosques = {m.mosque_id: m for m in mosques}
        self.fail_with = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def find(self, expression, page, sort, verified=None):
        self._check()
        docs = [(m, m.model_dump()) for m in self.mosques.values()]
        hits = [(m, doc) for m, doc in docs
                if expression.matches(doc) and (verified is None or m.verified == verified)]
        if sort is SortPolicy.DISTANCE:
            near = find_near(expression)
            hits.sort(key=lambda hit: near.distance_to(hit[1]))
        elif sort is SortPolicy.NEWEST:
            hits.sort(key=lambda hit: hit[0].created_at, reverse=True)
        else:
            hits.sort(key=lambda hit: hit[0].name.lower())
        return [m for m, _ in hits[page.skip:page.skip + page.limit]]

    async def get(self, mosque_id):
        self._check()
        return self.mosques.get(mosque_id)

    async def create(self, mosque, imam):
        self._check()
        now = datetime.now(timezone.utc)
        record = MosqueRecord(
            mosque_id=uuid4(), imam=imam, verified=False, created_at=now, updated_at=now,
            **mosque.model_dump(exclude={"imam"})
        )
        self.mosques[record.mosque_id] = record
        return record

    async def update(self, mosque_id, changes):
        self._check()
        existing = self.mosques.get(mosque_id)
        if existing is None:
            return None
        data = existing.model_dump()
        data.update(changes.model_dump(exclude_unset=True))
        updated = MosqueRecord.model_validate(data)
        self.mosques[mosque_id] = updated
        return updated

    async def delete(self, mosque_id):
        self._check()
        return self.mosques.pop(mosque_id, None) is not None

    async def set_verified(self, mosque_id):
        self._check()
        existing = self.mosques.get(mosque_id)
        if existing is None:
            return None
        verified = existing.model_copy(update={"verified": True})
        self.mosques[mosque_id] = verified
        return verified

    async def ping(self):
        self._check()
        return True


@pytest.fixture
def mosques():
    """A small London directory"""
    return {
        "central": make_mosque("East London Central Mosque", "Whitechapel Road, London",
                               lng=-0.0660, lat=51.5176, juma=(13, 30), age_days=3),
        "regents": make_mosque("Regent's Park Mosque", "Park Road, London",
                               lng=-0.1617, lat=51.5284, fajr=(4, 45), juma=(13, 0), age_days=2),
        "brick": make_mosque("Brick Lane Mosque", "Brick Lane, London",
                             lng=-0.0716, lat=51.5211, fajr=(5, 0), age_days=1),
        "late": make_mosque("Late Night Musalla", "Camden, London",
                            lng=-0.1426, lat=51.5390, isha=(23, 45)),
        "pending": make_mosque("Pending Central Masjid", "Croydon, London",
                               lng=-0.0982, lat=51.3762, verified=False, imam="imam-2"),
    }


@pytest.fixture
def repo(mosques):
    return InMemoryMosqueRepository(mosques.values())
