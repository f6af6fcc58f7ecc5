"""Notification dispatchers for wake outcomes (ntfy.sh, Pushover, email)."""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Any, Optional

import httpx

from wakeondemand.core.machine import Machine
from wakeondemand.core.wake import WakeProgress, WakeState

logger = logging.getLogger(__name__)

DEFAULT_NTFY_SERVER = "https://ntfy.sh"
PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


def send_wake_notification(
    progress: WakeProgress,
    machine: Machine,
    notif_config: dict[str, Any],
) -> list[str]:
    """
    Report a finished wake session on every configured channel.

    Channels:
      - ntfy (``ntfy_topic``, optional ``ntfy_server``)
      - Pushover (``pushover_token`` and ``pushover_user``)
      - Email (``smtp`` mapping)

    Cancelled sessions are not reported. A failing channel is logged and
    does not stop the others.

    Args:
        progress: Final state of the wake session
        machine: The machine that was woken
        notif_config: The ``settings.notifications`` section

    Returns:
        Names of the channels that accepted the notification
    """
    if not notif_config or progress.state is WakeState.CANCELLED:
        return []

    success = progress.state is WakeState.SUCCESS
    subject = _build_subject(progress)
    body = _build_body(progress, machine)
    delivered: list[str] = []

    topic = notif_config.get("ntfy_topic")
    if topic:
        server = notif_config.get("ntfy_server") or DEFAULT_NTFY_SERVER
        if _send_ntfy(topic, subject, body, success, server):
            delivered.append("ntfy")

    token = notif_config.get("pushover_token")
    user = notif_config.get("pushover_user")
    if token and user and _send_pushover(token, user, subject, body, success):
        delivered.append("pushover")

    smtp_cfg = notif_config.get("smtp")
    if smtp_cfg and _send_email(smtp_cfg, subject, body):
        delivered.append("email")

    return delivered


# ── Formatters ────────────────────────────────────────────────────────────────


def _build_subject(progress: WakeProgress) -> str:
    status = "✅ ONLINE" if progress.state is WakeState.SUCCESS else "❌ NO RESPONSE"
    return f"WakeOnDemand {status}: {progress.machine_name}"


def _build_body(progress: WakeProgress, machine: Machine) -> str:
    lines = [
        f"Machine: {machine.name}",
        f"MAC: {machine.mac_address}",
        f"Address: {machine.ipv4_address}:{machine.ping_port}",
        f"Result: {progress.status_message}",
        f"Attempts: {progress.attempts}/{progress.max_attempts}",
    ]
    if machine.description:
        lines.append(f"Description: {machine.description}")
    return "\n".join(lines)


# ── HTTP channels ─────────────────────────────────────────────────────────────


def _post(channel: str, url: str, **kwargs: Any) -> bool:
    """POST to a push service. Failures are logged, never raised."""
    try:
        httpx.post(url, timeout=10, **kwargs).raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Failed to send %s notification: %s", channel, exc)
        return False
    logger.info("%s notification sent", channel)
    return True


def _send_ntfy(topic: str, title: str, message: str, success: bool, server: str) -> bool:
    return _post(
        "ntfy",
        f"{server.rstrip('/')}/{topic}",
        content=message.encode("utf-8"),
        headers={
            "Title": title,
            "Priority": "default" if success else "high",
            "Tags": "zap" if success else "warning",
        },
    )


def _send_pushover(token: str, user: str, title: str, message: str, success: bool) -> bool:
    return _post(
        "Pushover",
        PUSHOVER_URL,
        data={
            "token": token,
            "user": user,
            "title": title,
            "message": message,
            "priority": 0 if success else 1,
        },
    )


# ── Email / SMTP ──────────────────────────────────────────────────────────────


def _send_email(smtp_cfg: dict[str, Any], subject: str, body: str) -> bool:
    """
    Mail the outcome. ``smtp_cfg`` keys: host, port, user, password,
    from_addr, to_addr (string or list), use_tls.
    """
    recipients = smtp_cfg.get("to_addr") or []
    if isinstance(recipients, str):
        recipients = [recipients]
    if not recipients:
        logger.warning("SMTP configured without 'to_addr'; email not sent")
        return False

    user: Optional[str] = smtp_cfg.get("user")
    password: Optional[str] = smtp_cfg.get("password")
    sender = smtp_cfg.get("from_addr") or user or "wakeondemand@localhost"

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)

    try:
        with smtplib.SMTP(
            smtp_cfg.get("host", "localhost"), int(smtp_cfg.get("port", 587)), timeout=15
        ) as smtp:
            if smtp_cfg.get("use_tls", True):
                smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.send_message(msg, from_addr=sender, to_addrs=recipients)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email notification: %s", exc)
        return False
    logger.info("Email notification sent to %s", ", ".join(recipients))
    return True
