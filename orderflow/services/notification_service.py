"""Fire-and-forget SMS notifications for OTP and delivery updates."""

from __future__ import annotations

import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from orderflow.core.config import settings

logger = logging.getLogger(__name__)

_NON_DIALABLE = re.compile(r"[^\d+]")


class SmsDeliveryError(Exception):
    """Raised by the gateway call when the message could not be handed over."""


def format_phone_number(phone: str | None) -> str:
    """Strip formatting characters and ensure a leading ``+``."""
    if not phone:
        raise ValueError("Phone number is required")
    cleaned = _NON_DIALABLE.sub("", phone)
    if not cleaned.startswith("+"):
        cleaned = "+" + cleaned
    if len(cleaned) < 10:
        raise ValueError("Invalid phone number format")
    return cleaned


class SmsNotifier:
    """SMS channel backed by an HTTP gateway.

    Without a configured gateway (development) messages are only logged.
    Failures are logged and never propagated to the caller. ``dispatch`` and
    ``send_otp`` hand the message to a small worker pool and return at once;
    ``send`` is the blocking delivery those workers run.
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        token: str | None = None,
        timeout_seconds: float | None = None,
        max_workers: int = 2,
    ) -> None:
        self.gateway_url = settings.sms_gateway_url if gateway_url is None else gateway_url
        self.token = settings.sms_gateway_token if token is None else token
        self.timeout_seconds = timeout_seconds or settings.sms_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sms")

    def dispatch(self, phone: str | None, body: str) -> Future[bool] | None:
        """Queue ``body`` for delivery; returns ``None`` once the notifier is shut down."""
        try:
            future = self._executor.submit(self.send, phone, body)
        except RuntimeError:
            logger.warning("[SMS] Notifier is shut down, dropping message")
            return None
        future.add_done_callback(_log_unexpected_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting messages; with ``wait`` pending deliveries finish first."""
        self._executor.shutdown(wait=wait)

    def send(self, phone: str | None, body: str) -> bool:
        """Send ``body`` to ``phone``; return whether the gateway accepted it."""
        try:
            recipient = format_phone_number(phone)
        except ValueError as exc:
            logger.warning("[SMS] Skipping notification: %s", exc)
            return False

        if not self.gateway_url:
            logger.info("[SMS] Development mode, message for %s: %s", recipient, body)
            return True

        try:
            self._post(recipient, body)
        except (requests.RequestException, SmsDeliveryError):
            logger.exception("[SMS] Failed to deliver message to %s", recipient)
            return False
        logger.info("[SMS] Message delivered to %s", recipient)
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, SmsDeliveryError)),
        reraise=True,
    )
    def _post(self, recipient: str, body: str) -> None:
        headers: dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = requests.post(
            self.gateway_url,
            json={"to": recipient, "body": body},
            headers=headers,
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 500:
            raise SmsDeliveryError(f"Gateway responded with {response.status_code}")
        response.raise_for_status()

    def send_otp(self, phone: str | None, order_id: int, otp: str) -> Future[bool] | None:
        return self.dispatch(
            phone, f"Your delivery code for order #{order_id} is {otp}. Share it only with your courier."
        )


def _log_unexpected_failure(future: Future[bool]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("[SMS] Notification worker failed", exc_info=exc)
