"""
Status change notifications.

A Notifier delivers one (feature, enabled, environment) event to the
outside world. The NotificationDispatcher decides how: inline for callers
that need the outcome, or on a bounded worker pool with retries for
fire-and-forget delivery.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

import httpx

from features.toggles.errors import NotificationError
from features.toggles.models import StatusChange

log = logging.getLogger(__name__)
dead_letters = logging.getLogger("flagpole.deadletter")


class Notifier(Protocol):
    def notify_status_change(self, feature: str, enabled: bool, environment: str) -> None:
        ...


def format_message(feature: str, enabled: bool, environment: str) -> str:
    state = "enabled" if enabled else "disabled"
    return f"Feature *{feature}* was {state} in *{environment}*"


class SlackNotifier:
    """Posts status changes to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.webhook_url = webhook_url
        self.client = client or httpx.Client(timeout=timeout)

    def notify_status_change(self, feature: str, enabled: bool, environment: str) -> None:
        payload = {"text": format_message(feature, enabled, environment)}
        try:
            resp = self.client.post(self.webhook_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Slack notification failed: {e}") from e

    def close(self) -> None:
        self.client.close()


class LogNotifier:
    """Logs status changes; used when no webhook is configured."""

    def notify_status_change(self, feature: str, enabled: bool, environment: str) -> None:
        log.info("[NOTIFY] %s", format_message(feature, enabled, environment))


class NotificationDispatcher:
    """Routes status changes to a notifier.

    deliver() is a single synchronous attempt and raises on failure.
    submit() runs on a bounded pool, retries with exponential backoff and
    records exhausted changes on the dead-letter logger; it never raises.
    """

    def __init__(
        self,
        notifier: Notifier,
        max_workers: int = 4,
        retries: int = 2,
        backoff: float = 0.5,
    ):
        self.notifier = notifier
        self.retries = max(retries, 0)
        self.backoff = backoff
        self._executor = ThreadPoolExecutor(
            max_workers=max(max_workers, 1),
            thread_name_prefix="notify",
        )

    def deliver(self, change: StatusChange) -> None:
        try:
            self.notifier.notify_status_change(change.feature, change.enabled, change.environment)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(f"failed to notify feature status change: {e}") from e

    def submit(self, change: StatusChange) -> Future:
        return self._executor.submit(self._deliver_with_retry, change)

    def _deliver_with_retry(self, change: StatusChange) -> bool:
        for attempt in range(self.retries + 1):
            try:
                self.deliver(change)
                return True
            except NotificationError as e:
                log.error(
                    "Failed to notify feature status change (attempt %d/%d): %s",
                    attempt + 1, self.retries + 1, e,
                )
                if attempt < self.retries:
                    time.sleep(self.backoff * (2 ** attempt))

        dead_letters.error(
            "Dropped notification: feature=%s environment=%s enabled=%s kind=%s",
            change.feature, change.environment, change.enabled, change.kind.value,
        )
        return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
