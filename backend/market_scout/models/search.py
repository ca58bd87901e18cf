from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.types import JSON

from market_scout.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Search(Base):
    __tablename__ = "searches"
    __table_args__ = (Index("idx_search_user_created", "user_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    query_text = Column(String(200), nullable=False)
    parameters = Column(JSON, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SearchJob(Base):
    __tablename__ = "search_jobs"
    __table_args__ = (
        Index("idx_job_search_created", "search_id", "created_at"),
        Index("idx_job_status_created", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    search_id = Column(String(36), ForeignKey("searches.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    error = Column(Text)
    error_code = Column(String(50))
    result_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
