"""Health Monitor — periodic service probes, alerts and auto-recovery.

One instance owns the whole health state:
  - Every ``check_interval_seconds`` (APScheduler interval job) the database
    and market-data probes run concurrently, then the email/auth config
    checks run inline.
  - A probe that raises bumps the service's ``consecutive_errors``; a probe
    that returns resets it and clears any alert for that service.
  - At ``max_consecutive_errors`` an alert is opened (or refreshed in place
    if one is already open) — never more than one per service.
  - Two straight database failures kick off a bounded reconnect loop with
    linear backoff, at most one loop at a time.
  - After each cycle, open error alerts trigger a summary email, gated by a
    single process-wide cooldown.

``run_health_checks`` is the tick handler; tests await it directly instead
of waiting on the scheduler.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from practice_os.config import settings
from practice_os.models.health import (
    Alert,
    HealthSnapshot,
    HistoryEntry,
    ServiceStatus,
)
from practice_os.services import health_checks
from practice_os.services.email_service import render_alert_email, send_email
from practice_os.services.health_checks import ProbeResult
from practice_os.utils.logger import logger

AsyncProbe = Callable[[], Awaitable[ProbeResult]]
SyncCheck = Callable[[], ProbeResult]
Reconnect = Callable[[], Awaitable[None]]
EmailSender = Callable[[str, str, str], Awaitable[None]]

DB_SERVICE = "database"

SERVICE_LABELS = {
    "database": "Database",
    "email": "Email",
    "auth": "Authentication",
    "market_data": "Market Data",
}

_MAX_HISTORY = 100
_SNAPSHOT_HISTORY = 20


class HealthMonitorConfig(BaseModel):
    """Timings and thresholds for one monitor."""

    check_interval_seconds: float = 30.0
    alert_cooldown_seconds: float = 300.0
    max_consecutive_errors: int = 3
    db_reconnect_threshold: int = 2
    db_reconnect_attempts: int = 5
    db_reconnect_delay_seconds: float = 2.0

    @classmethod
    def from_settings(cls) -> HealthMonitorConfig:
        return cls(
            check_interval_seconds=settings.HEALTH_CHECK_INTERVAL_SECONDS,
            alert_cooldown_seconds=settings.HEALTH_ALERT_COOLDOWN_SECONDS,
            max_consecutive_errors=settings.HEALTH_MAX_CONSECUTIVE_ERRORS,
            db_reconnect_attempts=settings.HEALTH_DB_RECONNECT_ATTEMPTS,
            db_reconnect_delay_seconds=settings.HEALTH_DB_RECONNECT_DELAY_SECONDS,
        )


def _default_probes() -> dict[str, AsyncProbe]:
    return {
        "database": health_checks.check_database,
        "market_data": health_checks.check_market_data,
    }


def _default_config_checks() -> dict[str, SyncCheck]:
    return {
        "email": health_checks.check_email_config,
        "auth": health_checks.check_auth_config,
    }


def _email_configured() -> bool:
    return settings.EMAIL_CONFIGURED


class HealthMonitor:
    """Runs probes on a timer and keeps alert state for the back office."""

    def __init__(
        self,
        config: HealthMonitorConfig | None = None,
        probes: dict[str, AsyncProbe] | None = None,
        config_checks: dict[str, SyncCheck] | None = None,
        reconnect: Reconnect | None = health_checks.reconnect_database,
        email_sender: EmailSender = send_email,
        email_configured: Callable[[], bool] = _email_configured,
        alert_recipient: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or HealthMonitorConfig.from_settings()
        self._probes = _default_probes() if probes is None else probes
        self._config_checks = (
            _default_config_checks() if config_checks is None else config_checks
        )
        self._reconnect = reconnect
        self._send_email = email_sender
        self._email_configured = email_configured
        self._alert_recipient = alert_recipient
        self._clock = clock
        self._sleep = sleep

        now = clock()
        self._services: dict[str, ServiceStatus] = {
            name: ServiceStatus(last_check=now)
            for name in (*self._probes, *self._config_checks)
        }
        self._alerts: dict[str, Alert] = {}
        self._history: deque[HistoryEntry] = deque(maxlen=_MAX_HISTORY)
        self._last_alert_email_sent: datetime | None = None

        self._cycle_running = False
        self._is_reconnecting = False
        self._reconnect_task: asyncio.Task | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> dict:
        """Run one check now, then every ``check_interval_seconds``."""
        if self.is_running:
            logger.warning("[HealthMonitor] Monitor already running")
            return {"status": "already_running"}

        logger.info("[HealthMonitor] Starting health monitor service...")
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_health_checks,
            IntervalTrigger(seconds=self.config.check_interval_seconds),
            id="health_checks",
            name="Health Checks",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self.is_running = True
        logger.info(
            "[HealthMonitor] Health monitor started (checking every %.0fs)",
            self.config.check_interval_seconds,
        )
        return {
            "status": "started",
            "interval_seconds": self.config.check_interval_seconds,
        }

    def stop(self) -> dict:
        """Cancel future checks; an in-flight cycle is left to finish."""
        if not self.is_running or not self._scheduler:
            return {"status": "not_running"}

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.is_running = False
        logger.info("[HealthMonitor] Health monitor stopped")
        return {"status": "stopped"}

    # ------------------------------------------------------------------
    # Read / acknowledge
    # ------------------------------------------------------------------

    def get_health_state(self) -> HealthSnapshot:
        """Copy of the current state; mutating it changes nothing here."""
        alerts = self.get_alerts(include_acknowledged=False)
        return HealthSnapshot(
            overall=self._overall(),
            services={
                name: s.model_copy() for name, s in self._services.items()
            },
            alerts=alerts,
            active_alert_count=len(alerts),
            is_running=self.is_running,
            is_reconnecting=self._is_reconnecting,
            last_alert_email_sent=self._last_alert_email_sent,
            history=[
                h.model_copy()
                for h in list(self._history)[-_SNAPSHOT_HISTORY:][::-1]
            ],
            timestamp=self._clock(),
        )

    def get_alerts(self, include_acknowledged: bool = True) -> list[Alert]:
        return [
            a.model_copy()
            for a in self._alerts.values()
            if include_acknowledged or not a.acknowledged
        ]

    def acknowledge_alert(self, alert_id: str) -> bool:
        """Mark one alert acknowledged. False if the id is unknown."""
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        logger.info(
            "[HealthMonitor] Alert %s (%s) acknowledged", alert_id, alert.service,
        )
        return True

    async def force_check(self) -> HealthSnapshot:
        """Run a cycle now and return the fresh snapshot."""
        await self.run_health_checks()
        return self.get_health_state()

    async def wait_for_reconnect(self) -> None:
        """Block until a background reconnect loop (if any) is done."""
        if self._reconnect_task is not None:
            await self._reconnect_task

    # ------------------------------------------------------------------
    # Check cycle
    # ------------------------------------------------------------------

    async def run_health_checks(self) -> None:
        """One full cycle: probe, record, alert, reconnect, notify."""
        if self._cycle_running:
            logger.debug("[HealthMonitor] Previous cycle still running, skipping tick")
            return

        self._cycle_running = True
        try:
            logger.debug("[HealthMonitor] Running health checks...")

            names = list(self._probes)
            outcomes = await asyncio.gather(
                *(self._run_probe(self._probes[n]) for n in names)
            )
            for name, outcome in zip(names, outcomes):
                self._record(name, outcome)

            for name, check in self._config_checks.items():
                try:
                    outcome = check()
                except Exception as exc:
                    outcome = exc
                self._record(name, outcome)

            self._update_alerts()
            self._maybe_reconnect()
            await self._notify()

            logger.debug(
                "[HealthMonitor] Check complete - Overall: %s", self._overall(),
            )
        finally:
            self._cycle_running = False

    @staticmethod
    async def _run_probe(probe: AsyncProbe) -> ProbeResult | Exception:
        try:
            return await probe()
        except Exception as exc:
            return exc

    def _record(self, name: str, outcome: ProbeResult | Exception) -> None:
        prev = self._services.get(name) or ServiceStatus()
        now = self._clock()

        if isinstance(outcome, Exception):
            message = str(outcome) or type(outcome).__name__
            logger.error("[HealthMonitor] %s check failed: %s", name, message)
            self._add_history(name, "error", message)
            self._services[name] = ServiceStatus(
                status="error",
                message=message,
                last_check=now,
                last_error=now,
                error_count=prev.error_count + 1,
                consecutive_errors=prev.consecutive_errors + 1,
            )
            return

        if prev.consecutive_errors > 0:
            logger.info(
                "[HealthMonitor] %s restored after %d errors",
                name, prev.consecutive_errors,
            )
            self._add_history(
                name, "recovered",
                f"Restored after {prev.consecutive_errors} errors",
            )
        self._services[name] = ServiceStatus(
            status=outcome.status,
            message=outcome.message,
            latency=outcome.latency,
            last_check=now,
            last_error=prev.last_error,
            error_count=prev.error_count,
            consecutive_errors=0,
        )
        self._clear_alert(name)

    def _overall(self) -> str:
        states = {s.status for s in self._services.values()}
        if "error" in states:
            return "error"
        if "warning" in states:
            return "warning"
        return "ok"

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _alert_for(self, service: str) -> Alert | None:
        for alert in self._alerts.values():
            if alert.service == service:
                return alert
        return None

    def _update_alerts(self) -> None:
        limit = self.config.max_consecutive_errors
        for name, status in self._services.items():
            if status.status == "error" and status.consecutive_errors >= limit:
                label = SERVICE_LABELS.get(name, name)
                self._raise_alert(
                    name,
                    f"{label}: {status.message} "
                    f"({status.consecutive_errors} consecutive errors)",
                )

    def _raise_alert(self, service: str, message: str, severity: str = "error") -> None:
        existing = self._alert_for(service)
        now = self._clock()
        if existing is None:
            alert = Alert(
                id=uuid.uuid4().hex[:12],
                service=service,
                severity=severity,
                message=message,
                timestamp=now,
            )
            self._alerts[alert.id] = alert
            logger.warning("[HealthMonitor] Alert raised — %s", message)
            self._add_history(service, "alert", message)
        elif not existing.acknowledged:
            existing.message = message
            existing.timestamp = now
            existing.severity = severity
        # Acknowledged: same failure streak, stays quiet until the service recovers

    def _clear_alert(self, service: str) -> None:
        alert = self._alert_for(service)
        if alert is not None:
            del self._alerts[alert.id]
            logger.info("[HealthMonitor] Alert for %s cleared", service)
            self._add_history(service, "alert_cleared", alert.message)

    # ------------------------------------------------------------------
    # Database auto-reconnect
    # ------------------------------------------------------------------

    def _maybe_reconnect(self) -> None:
        db = self._services.get(DB_SERVICE)
        if (
            self._reconnect is None
            or self._is_reconnecting
            or db is None
            or db.status != "error"
            or db.consecutive_errors < self.config.db_reconnect_threshold
        ):
            return
        self._is_reconnecting = True
        self._reconnect_task = asyncio.create_task(self._reconnect_database())

    async def _reconnect_database(self) -> None:
        attempts = self.config.db_reconnect_attempts
        logger.warning("[HealthMonitor] Attempting database reconnection...")
        self._add_history(DB_SERVICE, "reconnecting", "Auto-reconnect initiated")
        try:
            for attempt in range(1, attempts + 1):
                try:
                    await self._reconnect()
                except Exception as exc:
                    logger.error(
                        "[HealthMonitor] Reconnect attempt %d/%d failed: %s",
                        attempt, attempts, exc,
                    )
                    if attempt < attempts:
                        await self._sleep(self.config.db_reconnect_delay_seconds * attempt)
                    continue

                logger.info("[HealthMonitor] Database reconnected on attempt %d", attempt)
                self._add_history(DB_SERVICE, "reconnected", f"Success on attempt {attempt}")
                prev = self._services[DB_SERVICE]
                self._services[DB_SERVICE] = prev.model_copy(update={
                    "status": "ok",
                    "message": "Reconnected",
                    "last_check": self._clock(),
                    "consecutive_errors": 0,
                })
                self._clear_alert(DB_SERVICE)
                return

            logger.error("[HealthMonitor] All %d reconnection attempts failed", attempts)
            self._add_history(
                DB_SERVICE, "reconnect_failed", f"Failed after {attempts} attempts",
            )
        finally:
            self._is_reconnecting = False

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    async def _notify(self) -> None:
        failing = [
            a for a in self._alerts.values()
            if not a.acknowledged and a.severity == "error"
        ]
        if not failing:
            return

        if not self._email_configured():
            logger.debug("[HealthMonitor] Email not configured, skipping alert email")
            return

        now = self._clock()
        if self._last_alert_email_sent is not None:
            elapsed = (now - self._last_alert_email_sent).total_seconds()
            if elapsed < self.config.alert_cooldown_seconds:
                logger.debug(
                    "[HealthMonitor] Alert cooldown active, skipping email (%.0fs remaining)",
                    self.config.alert_cooldown_seconds - elapsed,
                )
                return

        services = [SERVICE_LABELS.get(a.service, a.service) for a in failing]
        subject, body = render_alert_email(services, "\n".join(a.message for a in failing))
        recipient = self._alert_recipient or settings.ALERT_RECIPIENT
        try:
            await self._send_email(recipient, subject, body)
        except Exception as exc:
            logger.error("[HealthMonitor] Failed to send alert email: %s", exc)
            self._add_history("alert", "failed", str(exc))
            return

        self._last_alert_email_sent = now
        logger.info("[HealthMonitor] Alert email sent to %s", recipient)
        self._add_history("alert", "sent", f"Email sent for: {', '.join(services)}")

    def _add_history(self, service: str, status: str, message: str = "") -> None:
        self._history.append(HistoryEntry(
            timestamp=self._clock(), service=service, status=status, message=message,
        ))
