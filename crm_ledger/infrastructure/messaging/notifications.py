"""User-facing notification sink"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Protocol

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {SUCCESS: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}


@dataclass
class Notification:
    kind: str
    message: str
    prominent: bool = False  # Must stay on screen until dismissed, not a toast


class NotificationSink(Protocol):
    def notify(self, kind: str, message: str, prominent: bool = False) -> None:
        ...


class CollectingNotificationSink:
    """Collects notifications for one request so they can be returned to the client"""

    def __init__(self, request_id: str = "unknown"):
        self.request_id = request_id
        self.notifications: List[Notification] = []

    def notify(self, kind: str, message: str, prominent: bool = False) -> None:
        if kind not in _LOG_LEVELS:
            raise ValueError(f"Unknown notification kind: {kind}")
        self.notifications.append(Notification(kind=kind, message=message, prominent=prominent))
        logging.log(
            _LOG_LEVELS[kind],
            message,
            extra={"request_id": self.request_id, "step": "notify", "kind": kind},
        )

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [asdict(n) for n in self.notifications]
