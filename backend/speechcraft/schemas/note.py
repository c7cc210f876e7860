"""
SpeechCraft Processing Server — Pydantic Records and API Schemas
=================================================================

What:  Two groups of Pydantic models:
       1. Records: the shapes that cross the NoteStore boundary (snake_case,
          back-end neutral: the Postgres store builds them from ORM rows, the
          memory store keeps them directly).
       2. API models: request/response bodies. The mobile client is written
          in JavaScript, so every API field is serialized in camelCase
          (noteId, processedText, openaiSuccess...).
Why:   Stores, processor and routes agree on one typed contract, and the
       OpenAPI docs are generated from the API models.
"""

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ══════════════════════════════════════════════════════════════════════════
# Store Records: what the NoteStore returns
# ══════════════════════════════════════════════════════════════════════════


class NoteRecord(BaseModel):
    """A note row as seen by the processor."""

    id: str
    user_id: str
    original_text: str
    processed_text: Optional[str] = None
    note_type: str = "general"
    processing_status: str = "pending"
    tokens_used: int = 0
    processing_time: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def stringify_uuid(cls, v):
        # ORM rows carry uuid.UUID; the API and the memory store use strings
        return str(v) if isinstance(v, uuid.UUID) else v


class ProfileRecord(BaseModel):
    id: str
    monthly_note_count: int = 0
    count_period_start: date
    subscription_tier: str = "free"

    model_config = {"from_attributes": True}

    @field_validator("id", mode="before")
    @classmethod
    def stringify_uuid(cls, v):
        return str(v) if isinstance(v, uuid.UUID) else v


class UsageLimits(BaseModel):
    """
    Result of the usage-limit check for one user.

    monthly_limit / notes_remaining are None for unlimited tiers.
    """

    user_id: str
    monthly_note_count: int
    subscription_tier: str
    monthly_limit: Optional[int] = None
    notes_remaining: Optional[int] = None
    limit_reached: bool = False


class ProcessingStats(BaseModel):
    """Aggregates over every note that has left the `pending` state."""

    total_processed: int = 0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    type_distribution: Dict[str, int] = Field(default_factory=dict)
    total_tokens_used: int = 0
    average_processing_time: float = 0.0


# ══════════════════════════════════════════════════════════════════════════
# API Models: camelCase on the wire
# ══════════════════════════════════════════════════════════════════════════


class ApiModel(BaseModel):
    """Base for request/response bodies: snake_case in Python, camelCase in JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessNoteRequest(ApiModel):
    """
    Body of POST /api/process.

    noteId is Optional here on purpose: a missing id must produce our own
    400 MISSING_NOTE_ID instead of FastAPI's generic schema error.
    """

    note_id: Optional[str] = Field(default=None, description="Identifier of the note to enhance")


class ProcessNoteData(ApiModel):
    """
    Outcome of one processing call.

    openai_success=False with processing_status='failed' is the degraded
    outcome: the completion provider failed and processed_text holds the
    locally formatted fallback.
    """

    note_id: str
    original_text: Optional[str] = None
    processed_text: Optional[str] = None
    note_type: Optional[str] = None
    processing_status: str
    tokens_used: int = 0
    processing_time: Optional[float] = Field(default=None, description="Completion time in seconds")
    total_time: Optional[int] = Field(default=None, description="End-to-end time in milliseconds")
    openai_success: Optional[bool] = None
    model: Optional[str] = None
    already_processed: bool = False


class ProcessNoteResponse(ApiModel):
    success: bool = True
    message: str
    data: ProcessNoteData


class NoteStatusData(ApiModel):
    note_id: str
    processing_status: str
    tokens_used: int = 0
    processing_time: Optional[float] = None
    has_processed_text: bool = False
    created_at: datetime
    updated_at: datetime


class NoteStatusResponse(ApiModel):
    success: bool = True
    data: NoteStatusData


class DatabaseStats(ApiModel):
    """
    Store aggregates exposed by /api/stats.

    Anonymous callers only get total_processed and status_counts; the other
    fields stay None and are dropped from the response.
    """

    total_processed: int
    status_counts: Dict[str, int]
    type_distribution: Optional[Dict[str, int]] = None
    total_tokens_used: Optional[int] = None
    average_processing_time: Optional[float] = None


class CompletionInfo(ApiModel):
    status: str
    backend: str
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    available_note_types: List[str] = Field(default_factory=list)


class ServerInfo(ApiModel):
    uptime_seconds: float
    environment: str
    version: str
    timestamp: datetime


class StatsData(ApiModel):
    authenticated: bool
    database: DatabaseStats
    completion: Optional[CompletionInfo] = None
    server: ServerInfo


class StatsResponse(ApiModel):
    success: bool = True
    data: StatsData


class DependencyHealth(ApiModel):
    status: str = Field(description="healthy or unhealthy")
    backend: str = Field(description="postgres, memory, openai, or simulated")
    model: Optional[str] = None


class HealthResponse(ApiModel):
    """
    Health check response.

    The service is only healthy when both external dependencies are: a relay
    that cannot reach its store or its provider cannot process anything.
    """

    success: bool
    status: str = Field(description="Overall status: healthy or unhealthy")
    timestamp: datetime
    version: str
    uptime_seconds: float
    services: Dict[str, DependencyHealth]


class ServiceInfoResponse(ApiModel):
    service: str
    version: str
    status: str
    environment: str
    uptime_seconds: float
    timestamp: datetime
    endpoints: Dict[str, str]


class ErrorResponse(ApiModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "success": false,
            "error": "MISSING_API_KEY",
            "message": "API key required",
            "requestId": "a1b2c3d4"
        }
    """

    success: bool = False
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")
