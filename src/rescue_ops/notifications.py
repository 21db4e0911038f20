from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    token: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MulticastReceipt:
    success_count: int
    failure_count: int


class Notifier(Protocol):
    def send_to_one(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> None:
        ...

    def send_to_many(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> MulticastReceipt:
        ...


class LoggingNotifier:
    """Keeps every message in ``sent`` and logs it; used when no push service is configured."""

    def __init__(self) -> None:
        self.sent: List[Notification] = []

    def send_to_one(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> None:
        message = Notification(token=token, title=title, body=body, data=dict(data or {}))
        self.sent.append(message)
        logger.info("Notification to %s: %s - %s", token, title, body)

    def send_to_many(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> MulticastReceipt:
        for token in tokens:
            self.send_to_one(token, title, body, data)
        return MulticastReceipt(success_count=len(tokens), failure_count=0)
