# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Notify - Operation outcome notifications over HTTP.

Targets:
- webhook: POSTs the event as JSON with configured headers
- mattermost: incoming webhook with a one-line text message
- matrix: m.room.message sent through the client-server API

Delivery never changes an operation's outcome; callers log failures.
"""

import time
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Dict, List
from urllib.parse import quote

import httpx
import structlog

from dbu.config import NotificationsConfig
from dbu.exceptions import NotificationError

logger = structlog.get_logger()

HTTP_TIMEOUT = 10.0

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def _format_time(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class Event:
    """Outcome of one backup or restore."""

    type: str
    message: str
    status: str
    database: str
    db_type: str
    started_at: datetime
    ended_at: datetime
    key: str = ""
    error: str = ""

    @property
    def duration(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "message": self.message,
            "status": self.status,
            "database": self.database,
            "db_type": self.db_type,
            "started_at": _format_time(self.started_at),
            "ended_at": _format_time(self.ended_at),
            "duration": f"{self.duration:.3f}s",
            "key": self.key,
        }
        if self.error:
            data["error"] = self.error
        return data

    @property
    def summary(self) -> str:
        return f"[{self.status}] {self.message}"


def status_from_error(error: BaseException | None) -> str:
    return STATUS_SUCCESS if error is None else STATUS_FAILED


def _check(response: httpx.Response, kind: str, name: str) -> None:
    if response.status_code >= 300:
        raise NotificationError(
            f"{kind} {name} returned {response.status_code}",
            details={"target": name, "status_code": response.status_code},
        )


class WebhookNotifier:
    def __init__(self, name: str, url: str, headers: Dict[str, str] | None = None) -> None:
        self.name = name
        self.url = url
        self.headers = headers or {}

    async def notify(self, client: httpx.AsyncClient, event: Event) -> None:
        response = await client.post(self.url, json=event.to_dict(), headers=self.headers)
        _check(response, "webhook", self.name)


class MattermostNotifier:
    def __init__(self, name: str, url: str) -> None:
        self.name = name
        self.url = url

    async def notify(self, client: httpx.AsyncClient, event: Event) -> None:
        response = await client.post(self.url, json={"text": event.summary})
        _check(response, "mattermost", self.name)


class MatrixNotifier:
    def __init__(self, name: str, server_url: str, access_token: str, room_id: str) -> None:
        self.name = name
        self.server_url = server_url.rstrip("/")
        self.access_token = access_token
        self.room_id = room_id

    def endpoint(self, txn_id: str) -> str:
        room = quote(self.room_id, safe="")
        return f"{self.server_url}/_matrix/client/v3/rooms/{room}/send/m.room.message/{txn_id}"

    async def notify(self, client: httpx.AsyncClient, event: Event) -> None:
        response = await client.put(
            self.endpoint(str(time.time_ns())),
            json={"msgtype": "m.text", "body": event.summary},
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        _check(response, "matrix", self.name)


class MultiNotifier:
    """
    Delivers each event to every target.

    All targets are attempted; if any fail, the last failure is raised
    after the others have been tried.
    """

    def __init__(self, targets: List[Any], client: httpx.AsyncClient | None = None) -> None:
        self.targets = targets
        self._client = client

    @property
    def empty(self) -> bool:
        return not self.targets

    async def notify(self, event: Event) -> None:
        if not self.targets:
            return

        last_error: Exception | None = None
        client = self._client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        try:
            for target in self.targets:
                try:
                    await target.notify(client, event)
                    logger.debug("notification_sent", target=target.name, status=event.status)
                except (httpx.HTTPError, NotificationError) as e:
                    last_error = e
                    logger.warning("notification_failed", target=target.name, error=str(e))
        finally:
            if self._client is None:
                await client.aclose()

        if last_error is not None:
            if isinstance(last_error, NotificationError):
                raise last_error
            raise NotificationError(f"Notification delivery failed: {last_error}") from last_error


def notifier_from_config(config: NotificationsConfig, client: httpx.AsyncClient | None = None) -> MultiNotifier:
    """Build a MultiNotifier for every configured target."""
    targets: List[Any] = []
    for w in config.webhooks:
        targets.append(WebhookNotifier(w.name, w.url, w.headers))
    for m in config.mattermost:
        targets.append(MattermostNotifier(m.name, m.url))
    for m in config.matrix:
        targets.append(MatrixNotifier(m.name, m.server_url, m.access_token, m.room_id))
    return MultiNotifier(targets, client=client)
