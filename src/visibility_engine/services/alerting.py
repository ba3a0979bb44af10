"""Alerting service for dead-lettered jobs and engine outages."""

import smtplib
from collections.abc import Callable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from visibility_engine.config import settings
from visibility_engine.db.models import AlertModel
from visibility_engine.db.session import SessionLocal
from visibility_engine.domain.enums import AlertSeverity
from visibility_engine.domain.models import Alert, Job
from visibility_engine.logging import get_logger
from visibility_engine.utils import run_async

logger = get_logger(__name__)


class AlertSink(Protocol):
    """Anything that can take an alert off the processor's hands."""

    def emit(self, alert: Alert) -> None: ...


def job_failed_alert(job: Job, error_message: str) -> Alert:
    """Build the owner notification for a dead-lettered job."""
    return Alert(
        owner_id=job.owner_id,
        type="job_failed",
        title="Job Failed",
        message=(
            f"Job {job.job_type} failed after {job.retry_count + 1} attempt(s): {error_message}"
        ),
        severity=AlertSeverity.WARNING.value,
        data={"job_id": str(job.id), "job_type": job.job_type},
    )


class AlertingService:
    """Persists alerts and fans them out to Discord and email.

    Persistence is the contract: an emitted alert always lands in the
    ``alerts`` table. Channel delivery is best effort and only logged on
    failure.
    """

    # Discord embed colors by severity
    DISCORD_COLORS = {
        AlertSeverity.INFO: 0x3498DB,  # Blue
        AlertSeverity.WARNING: 0xF39C12,  # Orange
        AlertSeverity.ERROR: 0xE74C3C,  # Red
        AlertSeverity.CRITICAL: 0x9B59B6,  # Purple
    }

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self.discord_webhook_url = settings.alert_discord_webhook_url
        self.email_enabled = bool(
            settings.alert_email_smtp_host and settings.alert_email_from and settings.alert_email_to
        )

    @property
    def has_channels(self) -> bool:
        return bool(self.discord_webhook_url or self.email_enabled)

    def emit(self, alert: Alert) -> None:
        """Store an alert and push it to the configured channels."""
        self.store(alert)
        if self.has_channels:
            run_async(self.dispatch(alert))

    def store(self, alert: Alert) -> None:
        with self._session_factory() as session, session.begin():
            session.add(
                AlertModel(
                    id=alert.id,
                    owner_id=alert.owner_id,
                    type=alert.type,
                    title=alert.title,
                    message=alert.message,
                    severity=alert.severity,
                    data=alert.data or None,
                )
            )
        logger.info(
            "alert_stored",
            alert_type=alert.type,
            severity=alert.severity,
            owner_id=str(alert.owner_id) if alert.owner_id else None,
        )

    async def dispatch(self, alert: Alert) -> bool:
        """Send an alert via all configured channels.

        Args:
            alert: The alert to send

        Returns:
            True if at least one channel succeeded
        """
        results = []

        if self.discord_webhook_url:
            try:
                results.append(await self._send_discord(alert))
            except Exception as e:
                logger.error("discord_alert_failed", error=str(e))
                results.append(False)

        if self.email_enabled:
            try:
                results.append(self._send_email(alert))
            except Exception as e:
                logger.error("email_alert_failed", error=str(e))
                results.append(False)

        return any(results) if results else False

    def list_alerts(self, owner_id: UUID | None = None, limit: int = 50) -> list[Alert]:
        """Most recent alerts, optionally for one owner."""
        stmt = select(AlertModel).order_by(AlertModel.created_at.desc()).limit(limit)
        if owner_id is not None:
            stmt = stmt.where(AlertModel.owner_id == owner_id)
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    async def _send_discord(self, alert: Alert) -> bool:
        if not self.discord_webhook_url:
            return False

        fields = []
        for key, value in alert.data.items():
            str_value = str(value)
            if len(str_value) > 200:
                str_value = str_value[:197] + "..."
            fields.append(
                {
                    "name": key.replace("_", " ").title(),
                    "value": str_value,
                    "inline": True,
                }
            )

        severity = AlertSeverity(alert.severity)
        payload = {
            "embeds": [
                {
                    "title": f"[{severity.value.upper()}] {alert.title}",
                    "description": alert.message,
                    "color": self.DISCORD_COLORS.get(severity, 0xE74C3C),
                    "fields": fields[:25],  # Discord limit
                    "footer": {"text": f"AI Visibility Engine - {alert.type}"},
                }
            ]
        }

        async with httpx.AsyncClient() as client:
            response = await client.post(self.discord_webhook_url, json=payload, timeout=10.0)
            response.raise_for_status()

        logger.info("discord_alert_sent", severity=severity.value, title=alert.title)
        return True

    def _send_email(self, alert: Alert) -> bool:
        if not self.email_enabled or not settings.alert_email_from or not settings.alert_email_smtp_host:
            return False

        subject = f"[{alert.severity.upper()}] {alert.title}"
        details = "\n".join(f"  {k}: {v}" for k, v in alert.data.items())
        text_body = f"{alert.title}\nSeverity: {alert.severity.upper()}\n\n{alert.message}\n"
        if details:
            text_body += f"\nDetails:\n{details}\n"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.alert_email_from
        msg["To"] = ", ".join(settings.alert_email_to)
        msg.attach(MIMEText(text_body, "plain"))

        with smtplib.SMTP(settings.alert_email_smtp_host, settings.alert_email_smtp_port) as server:
            server.starttls()
            if settings.alert_email_username and settings.alert_email_password:
                server.login(settings.alert_email_username, settings.alert_email_password)
            server.sendmail(settings.alert_email_from, settings.alert_email_to, msg.as_string())

        logger.info(
            "email_alert_sent",
            severity=alert.severity,
            title=alert.title,
            recipients=len(settings.alert_email_to),
        )
        return True
