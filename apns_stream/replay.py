# =============================================================================
# APNs Stream Client -- Replay Planning
# =============================================================================
#
# Decides which notifications of a finished generation must be sent again.
# Runs on a snapshot taken after the generation's writer has stopped.
# =============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence, assert_never

from .constants import UNKNOWN_IDENTIFIER
from .types import (
    CloseCause,
    CloseSignal,
    ConnectionClosed,
    ErrorStatus,
    InFlightRecord,
    Notification,
    ProtocolError,
    ShutdownRequested,
)


@dataclass(frozen=True, slots=True)
class ReplayPlan:
    """Outcome of one generation.

    Attributes:
        cause: Why the generation ended.
        notifications: Notifications to resubmit, in original send order.
        failed: The notification the server rejected, when it was still
            buffered.
        expired: Number of replay candidates dropped because their expiry
            had passed.
        unresolved: Notifications written but neither confirmed nor
            replayed, in send order. Only set when the client asked the
            generation to stop.
    """

    cause: CloseCause
    notifications: tuple[Notification, ...] = ()
    failed: Notification | None = None
    expired: int = 0
    unresolved: tuple[Notification, ...] = ()

    def __len__(self) -> int:
        return len(self.notifications)


def plan_replay(
    signal: CloseSignal | CloseCause,
    snapshot: Sequence[InFlightRecord],
    *,
    now: float | None = None,
) -> ReplayPlan:
    """Compute the replay set for a closed generation.

    * ``ShutdownRequested`` -- nothing is replayed; the whole snapshot is
      returned as unresolved.
    * ``ProtocolError`` -- everything sent after the failing id is replayed;
      the failing notification is dropped and everything before it is
      presumed delivered. A failing id that was already evicted is lost.
      An id of 0 or one newer than anything sent names no notification of
      this generation, so the whole snapshot is replayed.
    * ``ConnectionClosed`` -- nothing was confirmed, so the whole snapshot
      is replayed.
    """
    cause = signal.cause if isinstance(signal, CloseSignal) else signal

    failed = None
    if isinstance(cause, ShutdownRequested):
        return ReplayPlan(
            cause=cause,
            unresolved=tuple(r.notification for r in snapshot),
        )
    elif isinstance(cause, ProtocolError):
        # With SHUTDOWN the id names the last notification the server took
        server_shutdown = cause.status == ErrorStatus.SHUTDOWN
        newest = snapshot[-1].identifier if snapshot else UNKNOWN_IDENTIFIER
        if cause.failing_id == UNKNOWN_IDENTIFIER or (
            cause.failing_id > newest and not server_shutdown
        ):
            candidates = list(snapshot)
        else:
            candidates = [r for r in snapshot if r.identifier > cause.failing_id]
            if not server_shutdown:
                for record in snapshot:
                    if record.identifier == cause.failing_id:
                        failed = record.notification
                        break
    elif isinstance(cause, ConnectionClosed):
        candidates = list(snapshot)
    else:
        assert_never(cause)

    if now is None:
        now = time.time()
    notifications = tuple(
        r.notification for r in candidates if not r.notification.is_expired(now)
    )
    return ReplayPlan(
        cause=cause,
        notifications=notifications,
        failed=failed,
        expired=len(candidates) - len(notifications),
    )
