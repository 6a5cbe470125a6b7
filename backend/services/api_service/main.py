"""
FastAPI service for the Masjid Finder backend
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional
from uuid import UUID

import pytz
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..common.config import get_search_config, get_settings
from ..common.database import Database
from ..common.errors import MasjidFinderError, NotFoundError, UpstreamError, ValidationError
from ..common.logger import get_logger
from ..common.models import (
    ActionResponse, MosqueCreate, MosqueRecord, MosqueResponse, MosquesResponse, MosqueUpdate,
    NextPrayerResponse, TimeWindowResponse,
)
from ..identity.principal import (
    HeaderIdentityProvider, Principal, ensure_can_create, ensure_can_update, require_admin,
)
from ..search.filters import MatchAll
from ..search.query_builder import (
    SortPolicy, build_filter, clamp_page, paginate, parse_search_params, resolve_sort, search_to_params,
)
from ..search.time_window import compute_window, next_prayer, parse_time
from ..store.repository import MosqueRepository, SqlMosqueRepository

settings = get_settings()
search_config = get_search_config()
logger = get_logger("api_service", settings.log_level)
identity_provider = HeaderIdentityProvider(settings.admin_api_key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.db = Database.from_settings(settings)
    logger.info("Database engine created")
    try:
        yield
    finally:
        await app.state.db.dispose()
        logger.info("Database engine disposed")


# Initialize FastAPI
app = FastAPI(
    title="Masjid Finder API",
    description="""
Mosque directory with structured prayer-time schedules.

## Search

`GET /v1/mosques` with `by` one of `name`, `location`, `coordinates`,
`prayerTime` (prayer name in `query`, time in `prayerTime` or
`timeStart`/`timeEnd`). `lat`/`lng`/`radius` narrow any search to a
radius in meters. 20 results per `page`.

## Roles

Anyone can search. Imams create and edit their own mosque; admins verify,
reject and delete.
""",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Mosques", "description": "Search and manage mosques"},
        {"name": "Prayer Times", "description": "Next prayer and search windows"},
        {"name": "Admin", "description": "Verification workflow"},
    ]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(MasjidFinderError)
async def service_error_handler(request: Request, exc: MasjidFinderError):
    if isinstance(exc, UpstreamError):
        logger.error(f"{request.method} {request.url.path} failed upstream: {exc.__cause__ or exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.kind, "detail": exc.message}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    reasons = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return await service_error_handler(request, ValidationError(reasons))


# Dependencies
async def get_repository(request: Request) -> AsyncIterator[MosqueRepository]:
    """One session-scoped repository per request"""
    db: Database = request.app.state.db
    async with db.session() as session:
        yield SqlMosqueRepository(session)


def get_principal(request: Request) -> Principal:
    return identity_provider.resolve(request.headers)


async def load_mosque(repo: MosqueRepository, mosque_id: UUID) -> MosqueRecord:
    mosque = await repo.get(mosque_id)
    if mosque is None:
        raise NotFoundError(f"Mosque {mosque_id} not found")
    return mosque


@app.get("/healthz")
async def healthz(repo: MosqueRepository = Depends(get_repository)):
    """
    Health check endpoint with database connectivity test
    Returns 200 if healthy, 503 if unhealthy
    """
    await repo.ping()
    return {
        "status": "healthy",
        "service": "masjid_finder_api",
        "version": "1.0.0",
        "database": "connected",
        "timestamp": datetime.now(pytz.utc).isoformat()
    }


# =============================================================================
# Search
# =============================================================================

@app.get("/v1/mosques", response_model=MosquesResponse, tags=["Mosques"])
@limiter.limit("100/minute")
async def search_mosques(request: Request, repo: MosqueRepository = Depends(get_repository)):
    """
    Search verified mosques.

    An empty result is a successful search with `count: 0`.
    """
    search = parse_search_params(
        request.query_params,
        default_radius=search_config["default_radius_meters"],
        window_offset=search_config["window_offset_minutes"],
        default_time=settings.default_search_time,
    )
    expression = build_filter(search)
    page = paginate(search.page, search_config["page_size"])
    sort = resolve_sort(search)

    items = await repo.find(expression, page, sort, verified=True)

    logger.info(f"Served {len(items)} mosques", extra={"search_by": search.by, "count": len(items), "page": search.page})
    return MosquesResponse(
        page=search.page,
        count=len(items),
        search=search_to_params(search),
        items=items
    )


@app.get("/v1/prayer-window", response_model=TimeWindowResponse, tags=["Prayer Times"])
async def prayer_window(
    prayer_time: str = Query(..., alias="prayerTime", description="Start of the window, HH:MM"),
    offset: Optional[int] = Query(None, ge=0, le=24 * 60, description="Window length in minutes")
):
    """Window a prayerTime search would use for the given time"""
    offset_minutes = offset if offset is not None else search_config["window_offset_minutes"]
    window = compute_window(prayer_time, offset_minutes)
    return TimeWindowResponse(
        start=str(window.start),
        end=str(window.end),
        crosses_midnight=window.crosses_midnight,
        offset_minutes=offset_minutes
    )


# =============================================================================
# Mosques
# =============================================================================

@app.get("/v1/mosques/{mosque_id}", response_model=MosqueResponse, tags=["Mosques"])
@limiter.limit("120/minute")
async def get_mosque(request: Request, mosque_id: UUID, repo: MosqueRepository = Depends(get_repository)):
    mosque = await load_mosque(repo, mosque_id)
    return MosqueResponse(mosque=mosque)


@app.get("/v1/mosques/{mosque_id}/next-prayer", response_model=NextPrayerResponse, tags=["Prayer Times"])
@limiter.limit("120/minute")
async def get_next_prayer(
    request: Request,
    mosque_id: UUID,
    at: Optional[str] = Query(None, description="Wall-clock time HH:MM (default: now)"),
    weekday: Optional[int] = Query(None, ge=0, le=6, description="0 = Monday ... 6 = Sunday (default: today)"),
    repo: MosqueRepository = Depends(get_repository)
):
    """Next prayer at a mosque, with the Friday juma rule applied"""
    mosque = await load_mosque(repo, mosque_id)

    now = datetime.now(pytz.timezone(settings.timezone))
    if at is not None:
        current = parse_time(at)
        now = now.replace(hour=current.hours, minute=current.minutes, second=0, microsecond=0)
    if weekday is not None:
        now = now + timedelta(days=(weekday - now.weekday()) % 7)

    upcoming = next_prayer(
        mosque.prayer_times,
        now,
        azan=mosque.azan_times,
        congregational_weekday=search_config["congregational_weekday"],
    )
    return NextPrayerResponse(
        mosque_id=mosque.mosque_id,
        slot=upcoming.slot,
        iqamah=str(upcoming.time),
        azan=str(upcoming.azan) if upcoming.azan is not None else None,
        is_tomorrow=upcoming.is_tomorrow,
        as_of=now.strftime("%Y-%m-%d %H:%M")
    )


@app.post("/v1/mosques", response_model=MosqueResponse, status_code=201, tags=["Mosques"])
@limiter.limit("10/minute")
async def create_mosque(
    request: Request,
    mosque: MosqueCreate,
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    """Submit a mosque; it stays unverified until an admin approves it"""
    ensure_can_create(principal)
    owner = mosque.imam if principal.is_admin and mosque.imam else principal.user_id
    created = await repo.create(mosque, imam=owner)
    logger.info(f"Mosque submitted: {created.name}", extra={"mosque_id": created.mosque_id, "role": principal.role})
    return MosqueResponse(mosque=created)


@app.put("/v1/mosques/{mosque_id}", response_model=MosqueResponse, tags=["Mosques"])
@limiter.limit("30/minute")
async def update_mosque(
    request: Request,
    mosque_id: UUID,
    changes: MosqueUpdate,
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    existing = await load_mosque(repo, mosque_id)
    ensure_can_update(principal, str(mosque_id), owner=existing.imam)

    updated = await repo.update(mosque_id, changes)
    if updated is None:
        raise NotFoundError(f"Mosque {mosque_id} not found")
    logger.info("Mosque updated", extra={"mosque_id": mosque_id, "role": principal.role})
    return MosqueResponse(mosque=updated)


@app.delete("/v1/mosques/{mosque_id}", response_model=ActionResponse, tags=["Mosques"])
@limiter.limit("30/minute")
async def delete_mosque(
    request: Request,
    mosque_id: UUID,
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    require_admin(principal)
    if not await repo.delete(mosque_id):
        raise NotFoundError(f"Mosque {mosque_id} not found")
    logger.info("Mosque deleted", extra={"mosque_id": mosque_id, "role": principal.role})
    return ActionResponse(mosque_id=mosque_id, message="Mosque deleted successfully")


# =============================================================================
# Admin: verification workflow
# =============================================================================

@app.get("/v1/admin/mosques/unverified", response_model=MosquesResponse, tags=["Admin"])
@limiter.limit("60/minute")
async def list_unverified(
    request: Request,
    page: Optional[str] = Query(None),
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    """Mosques waiting for verification, newest first"""
    require_admin(principal)
    page_number = clamp_page(page)
    items = await repo.find(MatchAll(), paginate(page_number, search_config["page_size"]),
                            SortPolicy.NEWEST, verified=False)
    return MosquesResponse(page=page_number, count=len(items), search={"page": str(page_number)}, items=items)


@app.post("/v1/admin/mosques/{mosque_id}/verify", response_model=MosqueResponse, tags=["Admin"])
@limiter.limit("30/minute")
async def verify_mosque(
    request: Request,
    mosque_id: UUID,
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    require_admin(principal)
    verified = await repo.set_verified(mosque_id)
    if verified is None:
        raise NotFoundError(f"Mosque {mosque_id} not found")
    # The identity provider links the imam to the mosque from this event
    logger.info(f"Mosque verified; link imam {verified.imam}", extra={"mosque_id": mosque_id, "user_id": verified.imam})
    return MosqueResponse(mosque=verified)


@app.post("/v1/admin/mosques/{mosque_id}/reject", response_model=ActionResponse, tags=["Admin"])
@limiter.limit("30/minute")
async def reject_mosque(
    request: Request,
    mosque_id: UUID,
    principal: Principal = Depends(get_principal),
    repo: MosqueRepository = Depends(get_repository)
):
    """Reject a pending submission; verified mosques are removed with DELETE instead"""
    require_admin(principal)
    mosque = await load_mosque(repo, mosque_id)
    if mosque.verified:
        raise ValidationError("Mosque is already verified; delete it instead")
    await repo.delete(mosque_id)
    logger.info("Mosque rejected", extra={"mosque_id": mosque_id, "role": principal.role})
    return ActionResponse(mosque_id=mosque_id, message="Mosque rejected and removed successfully")


if __name__ == "__main__":
    uvicorn.run(
        "backend.services.api_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        log_level=settings.log_level.lower()
    )
