"""SQLModel ORM tables for worker storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class ProcessedJob(SQLModel, table=True):
    __tablename__ = "processed_jobs"  # type: ignore[bad-override]

    seq: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True)
    outcome: str = Field(index=True)
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
