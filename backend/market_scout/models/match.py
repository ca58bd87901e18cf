from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.types import JSON

from market_scout.database import Base


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        Index("idx_match_job_score", "job_id", "relevance_score"),
        Index("idx_match_job_price", "job_id", "price"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(String(36), ForeignKey("search_jobs.id", ondelete="CASCADE"), nullable=False)
    search_id = Column(String(36), ForeignKey("searches.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    price = Column(Float)
    currency = Column(String(10))
    location = Column(String(255))
    distance = Column(Float)
    listing_url = Column(String(1000), nullable=False)
    image_url = Column(String(1000))
    description = Column(Text)
    seller_info = Column(JSON)
    relevance_score = Column(Float)
    posted_at = Column(String(64))
    created_at = Column(DateTime, server_default=func.now())


class Unlock(Base):
    __tablename__ = "unlocks"
    __table_args__ = (UniqueConstraint("user_id", "match_id", name="uq_unlock_user_match"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    match_id = Column(String(36), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
