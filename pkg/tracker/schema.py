"""
Task tracker schema.

Task lifecycle:
  created (todo) → edited / moved between todo, backlog, done, ... → deleted

Statuses are an open set of string tags. Only "backlog" and "done" get their
own views; everything else counts as active.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from .errors import ValidationSkipped


# Status tags the UI treats specially
STATUS_TODO = "todo"
STATUS_BACKLOG = "backlog"
STATUS_DONE = "done"

DEFAULT_STATUS = STATUS_TODO

# Offered in the UI drop-downs; any other string is still accepted
KNOWN_STATUSES = (STATUS_TODO, "in-progress", STATUS_BACKLOG, STATUS_DONE)


def utc_now() -> datetime:
    """Current time, timezone-aware UTC, second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(ts: datetime) -> str:
    """RFC-3339 string, as stored in both backends."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp. Raises ValidationSkipped if unreadable."""
    if isinstance(value, datetime):
        ts = value
    else:
        if not isinstance(value, str) or not value:
            raise ValidationSkipped(f"missing created_at: {value!r}")
        raw = value.strip()
        # fromisoformat() before 3.11 does not take a trailing Z
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(raw)
        except ValueError as e:
            raise ValidationSkipped(f"bad created_at {value!r}: {e}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_status(status: Optional[str], fallback: str = DEFAULT_STATUS) -> str:
    """Strip a status tag; empty or missing falls back."""
    if status is not None and not isinstance(status, str):
        raise ValidationSkipped(f"status must be text, got {status!r}")
    status = (status or "").strip()
    return status or fallback


@dataclass
class Category:
    """A named tag tasks can point at."""
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        name = data.get("name") if isinstance(data, dict) else None
        if not isinstance(name, str):
            raise ValidationSkipped(f"category without a name: {data!r}")
        return cls(name=name)


@dataclass
class Task:
    """A single tracked task."""

    # Identifier (assigned by the repository)
    id: int

    # Content
    title: str
    category: str = ""
    description: str = ""

    # State
    status: str = DEFAULT_STATUS

    # Metadata
    created_at: datetime = field(default_factory=utc_now)

    def matches(self, needle: str) -> bool:
        """Case-insensitive substring match over title, description and category.

        ``needle`` must already be casefolded.
        """
        return (
            needle in self.title.casefold()
            or needle in self.description.casefold()
            or needle in self.category.casefold()
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize a stored record. Raises ValidationSkipped on bad input."""
        if not isinstance(data, dict):
            raise ValidationSkipped(f"task record is not an object: {data!r}")
        try:
            task_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationSkipped(f"task record without a usable id: {data!r}") from e
        if task_id <= 0:
            raise ValidationSkipped(f"task record with non-positive id {task_id}")

        for key in ("title", "category", "description", "status"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValidationSkipped(f"task {task_id}: {key} must be text, got {value!r}")

        return cls(
            id=task_id,
            title=data.get("title") or "",
            category=data.get("category") or "",
            description=data.get("description") or "",
            status=normalize_status(data.get("status")),
            created_at=parse_timestamp(data.get("created_at")),
        )
