import uuid
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from .database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class MatchingProfile(Base):
    __tablename__ = "matching_profile"

    user_id = Column(String, primary_key=True)
    gender = Column(String, nullable=True)
    interested_in = Column(JSONDocument, nullable=False, default=list)
    age = Column(Integer, nullable=True)
    campus = Column(String, nullable=True)
    ok_cross_campus = Column(Boolean, nullable=False, default=False)
    is_being_matched = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class QuestionnaireResponse(Base):
    __tablename__ = "questionnaire_response"

    user_id = Column(String, ForeignKey("matching_profile.user_id", ondelete="CASCADE"), primary_key=True)
    responses = Column(JSONDocument, nullable=False, default=dict)
    is_submitted = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)


class BatchMatch(Base):
    __tablename__ = "batch_match"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_number = Column(Integer, nullable=False)
    user_id = Column(String, nullable=False)
    matched_user_id = Column(String, nullable=False)
    compatibility_score = Column(Float, nullable=False)
    match_source = Column(String, nullable=False, default="blossom")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("batch_number", "user_id", "matched_user_id", name="uq_batch_match_pair"),
        Index("idx_batch_match_batch_user", "batch_number", "user_id"),
    )


class MatchingBatch(Base):
    __tablename__ = "matching_batch"

    batch_number = Column(Integer, primary_key=True)
    status = Column(String, nullable=False, default="pending")
    total_users = Column(Integer, nullable=False, default=0)
    eligible_users = Column(Integer, nullable=False, default=0)
    total_matches = Column(Integer, nullable=False, default=0)
    stats_json = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
