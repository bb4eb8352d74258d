"""Notification channels for triggered alerts."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Delivers one rendered notification to one recipient."""

    name: str = "channel"

    @abstractmethod
    async def send(self, to: str, subject: str, body: str, *, payload: dict[str, Any] | None = None) -> bool:
        """Deliver a message. Returns False when the channel refused it."""

    async def close(self) -> None:
        """Release resources held by the channel."""
        return None


class LogChannel(NotificationChannel):
    """Writes notifications to the log instead of delivering them."""

    name = "log"

    async def send(self, to: str, subject: str, body: str, *, payload: dict[str, Any] | None = None) -> bool:
        logger.info("Notification to %s: %s\n%s", to, subject, body)
        return True


class SmtpEmailChannel(NotificationChannel):
    """Sends notifications as plain-text email over SMTP.

    smtplib is blocking, so each send runs in a worker thread.
    """

    name = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout_seconds

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._starttls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str, *, payload: dict[str, Any] | None = None) -> bool:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        await asyncio.to_thread(self._send_sync, message)
        return True


class WebhookChannel(NotificationChannel):
    """POSTs notifications as JSON to a webhook URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send(self, to: str, subject: str, body: str, *, payload: dict[str, Any] | None = None) -> bool:
        data = {"to": to, "subject": subject, "body": body, **(payload or {})}
        response = await self._client.post(self._url, json=data)
        if not response.is_success:
            logger.warning("Webhook returned status %d", response.status_code)
            return False
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
