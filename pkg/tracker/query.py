"""
View filters: status classes and the search shared by the active, backlog and
done pages.
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .schema import Task, STATUS_BACKLOG, STATUS_DONE


class StatusClass(Enum):
    """Three-way partition of tasks for display."""
    ACTIVE = "active"      # anything that is neither backlog nor done
    BACKLOG = "backlog"
    DONE = "done"

    @classmethod
    def from_name(cls, value: Optional[str]) -> "StatusClass":
        """Resolve a view name from a URL; unknown names fall back to ACTIVE."""
        value = (value or "").strip().lower()
        if value in ("", "index", "all"):
            return cls.ACTIVE
        try:
            return cls(value)
        except ValueError:
            return cls.ACTIVE

    def includes(self, status: str) -> bool:
        return classify(status) is self


def classify(status: str) -> StatusClass:
    """Map a task status to the view it shows up in."""
    if status == STATUS_BACKLOG:
        return StatusClass.BACKLOG
    if status == STATUS_DONE:
        return StatusClass.DONE
    return StatusClass.ACTIVE


def filter_tasks(tasks: Iterable[Task], status_class: StatusClass,
                 query: str = "") -> List[Task]:
    """Tasks of one status class, optionally narrowed by a search string.

    The search is a case-insensitive substring match against title,
    description and category. Input order is preserved.
    """
    needle = (query or "").casefold()
    return [
        task for task in tasks
        if status_class.includes(task.status) and (not needle or task.matches(needle))
    ]


def count_by_class(tasks: Iterable[Task]) -> Dict[StatusClass, int]:
    """Number of tasks per view, for the navigation badges."""
    counts = {sc: 0 for sc in StatusClass}
    for task in tasks:
        counts[classify(task.status)] += 1
    return counts
