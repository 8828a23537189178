# =============================================================================
# APNs Stream Client -- In-Flight Buffer
# =============================================================================
#
# Bounded history of the notifications written during one generation. The
# server never confirms delivery, so this is the only place a notification
# can be recovered from once it has left the submission queue.
#
# Single writer: only the generation's ConnectionWriter appends. Replay
# reads a snapshot after the writer task has finished, so no lock is needed.
# =============================================================================

from __future__ import annotations

from collections import deque
from typing import Any

from ._logging import logger
from .constants import IN_FLIGHT_CAPACITY
from .types import InFlightRecord, SequencedNotification


class InFlightBuffer:
    """Oldest-first ring of recently sent notifications.

    When full, appending evicts the oldest record. Evicted notifications
    can no longer be replayed; that loss is accepted and only counted.

    Args:
        capacity: Maximum number of retained records. Default 1000.
    """

    def __init__(self, capacity: int = IN_FLIGHT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._records: deque[InFlightRecord] = deque(maxlen=capacity)
        self._next_position = 0
        self._evicted = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def size(self) -> int:
        return len(self._records)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted(self) -> int:
        return self._evicted

    def append(self, sequenced: SequencedNotification) -> InFlightRecord | None:
        """Record a sent notification.

        Returns the evicted record when the buffer was already full.

        Raises:
            ValueError: If the identifier does not increase.
        """
        if self._records and sequenced.identifier <= self._records[-1].identifier:
            raise ValueError(
                f"Identifier {sequenced.identifier} is not greater than "
                f"{self._records[-1].identifier}"
            )

        evicted = None
        if len(self._records) == self._capacity:
            evicted = self._records[0]
            self._evicted += 1
            logger.debug(
                "In-flight buffer full (%d), evicting id %d",
                self._capacity,
                evicted.identifier,
            )

        self._records.append(InFlightRecord(sequenced, self._next_position))
        self._next_position += 1
        return evicted

    def snapshot(self) -> tuple[InFlightRecord, ...]:
        """Currently retained records, oldest first."""
        return tuple(self._records)

    def clear(self) -> None:
        self._records.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._records),
            "capacity": self._capacity,
            "evicted": self._evicted,
            "oldest_id": self._records[0].identifier if self._records else None,
            "newest_id": self._records[-1].identifier if self._records else None,
        }
