"""Pydantic models for the health monitor.

ServiceStatus — latest probe outcome for one monitored service.
Alert         — an open problem with a service, at most one per service.
HealthSnapshot — read-only view served by ``GET /api/health``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ServiceState = Literal["ok", "warning", "error"]
AlertSeverity = Literal["error", "warning"]


class ServiceStatus(BaseModel):
    """Latest probe outcome for one service."""

    status: ServiceState = "ok"
    message: str = ""
    latency: float | None = None  # milliseconds
    last_check: datetime = Field(default_factory=datetime.now)
    last_error: datetime | None = None
    error_count: int = 0
    consecutive_errors: int = Field(default=0, ge=0)


class Alert(BaseModel):
    """An open alert raised after repeated probe failures."""

    id: str
    service: str
    severity: AlertSeverity = "error"
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    acknowledged: bool = False


class HistoryEntry(BaseModel):
    """One notable monitor event (error, recovery, reconnect, email)."""

    timestamp: datetime = Field(default_factory=datetime.now)
    service: str
    status: str
    message: str = ""


class HealthSnapshot(BaseModel):
    """Aggregated health state at one instant."""

    overall: ServiceState = "ok"
    services: dict[str, ServiceStatus] = Field(default_factory=dict)
    alerts: list[Alert] = Field(default_factory=list)
    active_alert_count: int = 0
    is_running: bool = False
    is_reconnecting: bool = False
    last_alert_email_sent: datetime | None = None
    history: list[HistoryEntry] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
