"""
NotificationChannel ABC: implement this to add a new digest delivery target.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MONDAY = 0


@dataclass(frozen=True)
class CalendarTrigger:
    """Repeating wall-clock trigger. ``weekday`` uses ``datetime.weekday()`` numbering (Monday = 0)."""

    hour: int
    minute: int
    weekday: Optional[int] = None
    repeats: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError(f"Invalid trigger time {self.hour}:{self.minute}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"Invalid trigger weekday {self.weekday}")

    @classmethod
    def daily(cls, hour: int, minute: int) -> "CalendarTrigger":
        return cls(hour=hour, minute=minute)

    @classmethod
    def weekly(cls, hour: int, minute: int, weekday: int = MONDAY) -> "CalendarTrigger":
        return cls(hour=hour, minute=minute, weekday=weekday)

    def matches(self, moment: datetime) -> bool:
        if self.weekday is not None and moment.weekday() != self.weekday:
            return False
        return moment.hour == self.hour and moment.minute == self.minute

    def to_dict(self) -> Dict[str, Any]:
        return {"hour": self.hour, "minute": self.minute, "weekday": self.weekday, "repeats": self.repeats}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarTrigger":
        return cls(
            hour=int(data["hour"]),
            minute=int(data["minute"]),
            weekday=data.get("weekday"),
            repeats=bool(data.get("repeats", True)),
        )


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    subtitle: str = ""
    user_info: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "subtitle": self.subtitle, "body": self.body, "userInfo": dict(self.user_info)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationContent":
        return cls(
            title=str(data.get("title", "")),
            subtitle=str(data.get("subtitle", "")),
            body=str(data.get("body", "")),
            user_info=dict(data.get("userInfo") or {}),
        )


class NotificationChannel(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def permission_granted(self) -> bool:
        """Whether this channel may deliver at all (e.g. a webhook is configured)."""

    @abstractmethod
    async def register_recurring(self, identifier: str, trigger: CalendarTrigger, content: NotificationContent) -> None:
        """Register or replace the recurring notification ``identifier``."""

    @abstractmethod
    async def deliver_now(self, content: NotificationContent) -> bool:
        """Deliver immediately. Returns True on success."""

    @abstractmethod
    async def cancel_all(self) -> None:
        ...

    @abstractmethod
    async def cancel(self, identifiers: List[str]) -> None:
        ...

    @abstractmethod
    async def pending_identifiers(self) -> List[str]:
        ...

    async def pending_count(self) -> int:
        return len(await self.pending_identifiers())
