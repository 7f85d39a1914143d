"""
Synthetic order payloads.

Every virtual-user iteration posts a fresh order. The order is a pure function
of the VU id, the iteration number and one clock read, so two runs with the
same clock produce identical bodies.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

# Iteration counters stay below this per VU, so indices never collide across VUs
INDEX_MULTIPLIER = 100000
DATE_SPREAD_DAYS = 30
BASE_DATE = datetime(2025, 8, 1)
DESCRIPTION = "Some description "


def wall_clock_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def order_index(vu_id: int, iteration: int) -> int:
    """Unique index of an iteration within a run."""
    return vu_id * INDEX_MULTIPLIER + iteration


def format_datetime(value: datetime) -> str:
    """Format as ``DD.MM.YYYY HH:MM:SS``."""
    return value.strftime("%d.%m.%Y %H:%M:%S")


def creation_date(index: int) -> datetime:
    """Pseudo creation date cycling through a 30 day window from BASE_DATE."""
    return BASE_DATE + timedelta(days=index % DATE_SPREAD_DAYS)


@dataclass(frozen=True)
class Author:
    name: str
    surname: str


@dataclass(frozen=True)
class Order:
    """Request body posted by a virtual user."""
    title: str
    description: str
    date: str
    author: Author

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "author": {
                "name": self.author.name,
                "surname": self.author.surname,
            },
        }


class PayloadGenerator:
    """
    Builds orders from (vu id, iteration, clock).

    Args:
        clock: Callable returning milliseconds. It is read once per generate()
            call and embedded in the title so titles stay unique across
            long runs. Defaults to wall_clock_ms.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or wall_clock_ms

    def generate(self, vu_id: int, iteration: int, now: Optional[int] = None) -> Order:
        """
        Build the order for one iteration.

        Args:
            vu_id: Virtual user id.
            iteration: Zero-based iteration number of that VU.
            now: Millisecond timestamp to embed; read from the clock when omitted.

        Returns:
            A new immutable Order.
        """
        if now is None:
            now = self._clock()
        index = order_index(vu_id, iteration)

        return Order(
            title=f"Title {vu_id}-{iteration}-{now}",
            description=DESCRIPTION,
            date=format_datetime(creation_date(index)),
            author=Author(name=f"John {index}", surname=f"Doe {index}"),
        )
