"""Data models for games, milestones, progress and rendered requests."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional


class RequestType(str, Enum):
    """Kinds of rendered request payloads."""
    SESSION = "session"
    EVENT = "event"


class MilestoneKind(str, Enum):
    """Source of a due item."""
    LEVEL = "level"
    PURCHASE_EVENT = "purchase_event"


@dataclass
class Game:
    """A game owning levels, purchase events and accounts."""
    id: int
    name: str
    created_at: Optional[str] = None


@dataclass
class Account:
    """An account progressing through one game's milestones."""
    id: int
    game_id: int
    name: str
    start_date: str  # YYYY-MM-DD or DD-Mon
    start_time: str  # HH:MM[:SS]
    request_template: str
    created_at: Optional[str] = None


@dataclass
class Level:
    """A level milestone, due `days_offset` days after the account start."""
    id: int
    game_id: int
    event_token: str
    level_name: str
    days_offset: int
    time_spent: int
    is_bonus: bool = False


@dataclass
class PurchaseEvent:
    """A purchase event in a game's catalog."""
    id: int
    game_id: int
    event_token: str
    is_restricted: bool = False
    max_days_offset: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class AccountLevelProgress:
    """Completion state of one level for one account."""
    account_id: int
    level_id: int
    is_completed: bool = False
    completed_at: Optional[str] = None


@dataclass
class AccountPurchaseEventProgress:
    """Per-account schedule and completion state of a purchase event."""
    account_id: int
    purchase_event_id: int
    days_offset: int
    time_spent: int
    is_completed: bool = False
    completed_at: Optional[str] = None


# Partial updates: only fields that are not None are written.

@dataclass
class UpdateGameRequest:
    id: int
    name: Optional[str] = None


@dataclass
class UpdateAccountRequest:
    id: int
    name: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    request_template: Optional[str] = None


@dataclass
class UpdateLevelRequest:
    id: int
    game_id: Optional[int] = None
    event_token: Optional[str] = None
    level_name: Optional[str] = None
    days_offset: Optional[int] = None
    time_spent: Optional[int] = None
    is_bonus: Optional[bool] = None


@dataclass
class UpdatePurchaseEventRequest:
    id: int
    event_token: Optional[str] = None
    is_restricted: Optional[bool] = None
    max_days_offset: Optional[int] = None


@dataclass
class UpdatePurchaseEventProgressRequest:
    account_id: int
    purchase_event_id: int
    is_completed: Optional[bool] = None
    days_offset: Optional[int] = None
    time_spent: Optional[int] = None


def changed_fields(request: Any, key_fields: tuple[str, ...]) -> dict[str, Any]:
    """Get the fields of an update request that carry a value."""
    return {
        f.name: getattr(request, f.name)
        for f in fields(request)
        if f.name not in key_fields and getattr(request, f.name) is not None
    }


@dataclass
class DueItem:
    """A milestone selected for rendering on the target day."""
    kind: MilestoneKind
    event_token: str
    base_time_spent: int
    days_offset: int
    level_id: Optional[int] = None
    level_name: Optional[str] = None


@dataclass
class RenderedRequest:
    """A fully rendered request payload."""
    request_type: RequestType
    content: str
    event_token: str
    level_id: Optional[int]
    time_spent: int
    timestamp: str

    def to_dict(self) -> dict:
        """Convert request to dictionary for serialization."""
        return {
            "request_type": self.request_type.value,
            "content": self.content,
            "event_token": self.event_token,
            "level_id": self.level_id,
            "time_spent": self.time_spent,
            "timestamp": self.timestamp,
        }


@dataclass
class DailyRequestsResponse:
    """All requests due for one account on one date."""
    account_id: int
    account_name: str
    target_date: str
    days_passed: int
    requests: list[RenderedRequest] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert response to dictionary for serialization."""
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "target_date": self.target_date,
            "days_passed": self.days_passed,
            "requests": [r.to_dict() for r in self.requests],
        }
