from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    kwargs = {}
    if database_url.startswith("sqlite"):
        # Worker threads share the engine with the request threads.
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class GenerationJobRow(Base):
    __tablename__ = "generation_jobs"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False)
    status = Column(String(32), nullable=False, index=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    document = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class RenderQueueRow(Base):
    __tablename__ = "render_queue"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String, nullable=True)
    aspect_ratio = Column(String(8), nullable=False)
    burn_subtitles = Column(Boolean, nullable=False, default=False)
    subtitle_style = Column(String, nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    priority = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True)
    output_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    processing_time_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class WebhookDeliveryRow(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), nullable=False, index=True)
    url = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    payload = Column(JSON, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)


class CleanupQueueRow(Base):
    __tablename__ = "cleanup_queue"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String, nullable=True)
    asset_type = Column(String(32), nullable=False)
    asset_url = Column(Text, nullable=False)
    scheduled_deletion_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_attempt_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
