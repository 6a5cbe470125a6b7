"""
Table definitions for the mosque store (see backend/sql/001_mosques.sql)
"""
from sqlalchemy import Boolean, Column, DateTime, Float, MetaData, String, Table, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

metadata = MetaData()

mosques = Table(
    "mosques",
    metadata,
    Column("mosque_id", UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()),
    Column("name", String(300), nullable=False),
    Column("location", String(500), nullable=False),
    # Longitude first, matching the [lng, lat] convention of the API
    Column("longitude", Float, nullable=False),
    Column("latitude", Float, nullable=False),
    # {"fajr": {"hours": 5, "minutes": 30}, ...}; optional slots may be absent
    Column("prayer_times", JSONB, nullable=False),
    Column("azan_times", JSONB, nullable=True),
    Column("photos", JSONB, nullable=False, server_default="[]"),
    Column("imam", String(200), nullable=False),
    Column("verified", Boolean, nullable=False, server_default="false"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
