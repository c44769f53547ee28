"""Per-sender replay detection with a sliding counter window."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .types import REPLAY_WINDOW, ReplayRejectedError


class ReplayVerdict(Enum):
    """Outcome of a replay check."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    STALE = "stale"

    @property
    def accepted(self) -> bool:
        """Whether the message may be delivered."""
        return self is ReplayVerdict.ACCEPTED


@dataclass
class ReplayState:
    """Replay state for one remote sender.

    Attributes:
        high_water_mark: The highest counter accepted from the sender.
        recent: Counters accepted within the trailing window.
    """

    high_water_mark: int
    recent: set[int] = field(default_factory=set)

    def floor(self, window: int) -> int:
        """Lowest counter still tracked for this sender."""
        return self.high_water_mark - window


class ReplayGuard:
    """
    Sliding-window duplicate and staleness detector, keyed by sender.

    A counter is rejected if it was already accepted, or if it falls strictly
    below ``high_water_mark - window``. Anything else is accepted and
    recorded, so bounded reordering is tolerated while memory stays
    O(window) per sender.

    Not thread-safe: the owning session calls it from a single dispatcher.
    """

    def __init__(self, window: int = REPLAY_WINDOW) -> None:
        if window < 1:
            raise ValueError(f"Replay window must be positive, got {window}")
        self._window = window
        self._senders: dict[str, ReplayState] = {}

    @property
    def window(self) -> int:
        """The window size."""
        return self._window

    def check(self, sender_id: str, counter: int) -> ReplayVerdict:
        """
        Check a counter from a sender and record it if accepted.

        Args:
            sender_id: The remote sender's participant id.
            counter: The envelope counter.

        Returns:
            ReplayVerdict.ACCEPTED, or the reason for rejection.
        """
        state = self._senders.get(sender_id)
        if state is None:
            self._senders[sender_id] = ReplayState(
                high_water_mark=counter, recent={counter}
            )
            return ReplayVerdict.ACCEPTED

        if counter in state.recent:
            return ReplayVerdict.DUPLICATE

        if counter < state.floor(self._window):
            return ReplayVerdict.STALE

        if counter > state.high_water_mark:
            state.high_water_mark = counter
        state.recent.add(counter)

        floor = state.floor(self._window)
        state.recent = {c for c in state.recent if c >= floor}

        return ReplayVerdict.ACCEPTED

    def require(self, sender_id: str, counter: int) -> None:
        """
        Like check(), but raise on rejection.

        Raises:
            ReplayRejectedError: If the counter is a duplicate or stale.
        """
        verdict = self.check(sender_id, counter)
        if not verdict.accepted:
            raise ReplayRejectedError(
                f"Counter {counter} from {sender_id} rejected ({verdict.value})"
            )

    def state_for(self, sender_id: str) -> Optional[ReplayState]:
        """Returns the tracked state for a sender, if any."""
        return self._senders.get(sender_id)

    def forget(self, sender_id: str) -> None:
        """Drop the state for one sender."""
        self._senders.pop(sender_id, None)

    def clear(self) -> None:
        """Drop the state for every sender."""
        self._senders.clear()

    def __len__(self) -> int:
        return len(self._senders)

    def __contains__(self, sender_id: str) -> bool:
        return sender_id in self._senders
