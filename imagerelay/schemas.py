"""Pydantic models shared by the ledger, the orchestrator and the endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class QuotaTier(str, Enum):
    FREE = "free"
    PRO = "pro"


class ClientQuotaRecord(BaseModel):
    client_id: str = Field(..., min_length=1, description="Opaque caller identifier, usually an IP address")
    last_request_timestamp: datetime = Field(..., description="Instant of the most recently accepted request")
    requests_made: int = Field(default=0, ge=0, description="Accepted requests since the window last reset")
    tier: QuotaTier = QuotaTier.FREE


class AdmissionResult(BaseModel):
    admitted: bool
    record: ClientQuotaRecord
    reason: Optional[str] = None


# ---- HTTP payloads ----
class ImageResponse(BaseModel):
    imageUrl: str = Field(..., description="Public URL of the hosted image")


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    modelType: str
    uploadProvider: str


class QuotaStatus(BaseModel):
    clientId: str
    tier: QuotaTier
    requestsMade: int
    limit: Optional[int] = Field(None, description="Daily ceiling, null when the tier is unbounded")
    remaining: Optional[int] = Field(None, description="Requests left in the window, null when unbounded")
    windowResetsAt: Optional[datetime] = None
# ----------------------
