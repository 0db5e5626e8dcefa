"""Deliver the daily report at most once per calendar day."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Literal

import requests

from . import __version__
from .config import TelemetrySettings
from .errors import ClientRejectedError, TransportError
from .models import ArchiveRecord, DailyAggregate
from .payload import DeveloperIdentity, build_payload
from .state import StateStore

logger = logging.getLogger(__name__)

USER_AGENT = f"DevLake-Telemetry-Collector/{__version__}"

SendStatus = Literal["sent", "skipped", "disabled"]


@dataclass(slots=True)
class SendResult:
    status: SendStatus
    date: date
    attempts: int = 0
    status_code: int | None = None
    archive: ArchiveRecord | None = None

    @property
    def ok(self) -> bool:
        return self.status in {"sent", "skipped"}


def backoff_delay(base: float, attempt: int) -> float:
    """Delay before retry ``attempt`` (1-based): ``base * attempt**2``."""

    return base * attempt * attempt


class TransmissionClient:
    """Gate, send, retry and archive the daily payload."""

    def __init__(
        self,
        store: StateStore,
        *,
        webhook_url: str | None,
        secondary_url: str | None = None,
        api_token: str | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        timeout: tuple[float, float] = (10.0, 30.0),
        retention_days: int | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self._webhook_url = webhook_url
        self._secondary_url = secondary_url
        self._api_token = api_token
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._timeout = timeout
        self._retention_days = retention_days
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: TelemetrySettings, store: StateStore, **kwargs: Any) -> "TransmissionClient":
        return cls(
            store,
            webhook_url=settings.webhook_url,
            secondary_url=settings.webhook_url_secondary,
            api_token=settings.api_token,
            max_attempts=settings.max_send_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            timeout=(settings.connect_timeout_seconds, settings.request_timeout_seconds),
            retention_days=settings.data_retention_days,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    def already_sent(self, today: date) -> bool:
        return self._store.load_last_send_date() == today

    def send(self, aggregate: DailyAggregate, identity: DeveloperIdentity, *, today: date) -> SendResult:
        """Send ``aggregate`` unless a report already went out on ``today``.

        Raises ``ClientRejectedError`` on 4xx and ``TransportError`` once retries
        are exhausted. The live aggregate is left untouched either way.
        """

        if self.already_sent(today):
            logger.info("Daily data already sent on %s, skipping", today.isoformat())
            return SendResult(status="skipped", date=aggregate.date)
        if not self._webhook_url:
            logger.warning("No webhook_url configured, daily data not sent")
            return SendResult(status="disabled", date=aggregate.date)

        body = json.dumps(build_payload(aggregate, identity))
        if self._secondary_url:
            self._send_secondary(body)

        attempts, status_code = self._post_with_retry(body)
        self._store.mark_sent(today)
        archive = self._store.write_archive(aggregate)
        if self._retention_days is not None:
            self._store.prune_archives(self._retention_days, today)
        logger.info(
            "Sent daily data for %s (HTTP %s)",
            aggregate.date.isoformat(),
            status_code,
            extra={"attempts": attempts},
        )
        return SendResult(
            status="sent",
            date=aggregate.date,
            attempts=attempts,
            status_code=status_code,
            archive=archive,
        )

    def _send_secondary(self, body: str) -> None:
        try:
            response = self._session.post(
                self._secondary_url, data=body, headers=self._headers(), timeout=self._timeout
            )
        except requests.RequestException as exc:
            logger.warning("Secondary webhook failed: %s", exc)
            return
        if not 200 <= response.status_code < 300:
            logger.warning("Secondary webhook returned HTTP %s", response.status_code)

    def _post_with_retry(self, body: str) -> tuple[int, int]:
        last_error = "no attempt made"
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._session.post(
                    self._webhook_url, data=body, headers=self._headers(), timeout=self._timeout
                )
            except requests.RequestException as exc:
                last_error = f"network error: {exc}"
                logger.error("Network error on attempt %d/%d: %s", attempt, self._max_attempts, exc)
            else:
                code = response.status_code
                if 200 <= code < 300:
                    return attempt, code
                if 400 <= code < 500:
                    logger.error("Client error (HTTP %s), not retrying", code)
                    raise ClientRejectedError(code, (response.text or "")[:200])
                last_error = f"HTTP {code}"
                logger.warning("Server error (HTTP %s) on attempt %d/%d", code, attempt, self._max_attempts)

            if attempt < self._max_attempts:
                delay = backoff_delay(self._backoff_seconds, attempt)
                logger.info("Retrying in %.0fs", delay)
                self._sleep(delay)

        raise TransportError(
            f"Failed to send daily data after {self._max_attempts} attempts ({last_error})",
            attempts=self._max_attempts,
        )


__all__ = ["SendResult", "TransmissionClient", "USER_AGENT", "backoff_delay"]
