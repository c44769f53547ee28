"""Tests for sliding-window replay detection."""

import pytest
from roomchat.replay import ReplayGuard, ReplayState, ReplayVerdict
from roomchat.types import REPLAY_WINDOW, ReplayRejectedError
from .test_vectors import ALICE_ID, BOB_ID


@pytest.fixture
def guard() -> ReplayGuard:
    """Guard with the protocol window."""
    return ReplayGuard()


class TestReplayWindow:
    """Test the accept/reject policy."""

    def test_window_default(self, guard) -> None:
        """The protocol window is 64."""
        assert guard.window == REPLAY_WINDOW == 64

    def test_first_message_accepted(self, guard) -> None:
        """Any first counter from a new sender is accepted."""
        assert guard.check(ALICE_ID, 1000) is ReplayVerdict.ACCEPTED
        state = guard.state_for(ALICE_ID)
        assert state == ReplayState(high_water_mark=1000, recent={1000})

    def test_in_order_then_duplicate(self, guard) -> None:
        """Counters 1..65 accept, re-delivering 65 is a duplicate."""
        for counter in range(1, 66):
            assert guard.check(ALICE_ID, counter).accepted, f"counter {counter}"

        assert guard.check(ALICE_ID, 65) is ReplayVerdict.DUPLICATE

    def test_old_counter_after_advance(self, guard) -> None:
        """After reaching 66, counters 1 and 2 are both rejected."""
        for counter in range(1, 67):
            guard.check(ALICE_ID, counter)

        assert not guard.check(ALICE_ID, 2).accepted
        assert guard.check(ALICE_ID, 1) is ReplayVerdict.STALE

    def test_out_of_order(self, guard) -> None:
        """Delivering 5, 3, 4 accepts all three."""
        assert guard.check(ALICE_ID, 5).accepted
        assert guard.check(ALICE_ID, 3).accepted
        assert guard.check(ALICE_ID, 4).accepted

        state = guard.state_for(ALICE_ID)
        assert state.high_water_mark == 5
        assert state.recent == {3, 4, 5}

    def test_reordered_duplicates(self, guard) -> None:
        """A late counter is accepted once only."""
        guard.check(ALICE_ID, 10)
        assert guard.check(ALICE_ID, 7).accepted
        assert guard.check(ALICE_ID, 7) is ReplayVerdict.DUPLICATE

    def test_counter_at_floor_accepted(self, guard) -> None:
        """A counter exactly at high_water_mark - window is still accepted."""
        guard.check(ALICE_ID, 100)
        assert guard.check(ALICE_ID, 36).accepted
        assert guard.check(ALICE_ID, 35) is ReplayVerdict.STALE

    def test_large_jump_prunes(self, guard) -> None:
        """Jumping ahead prunes every entry below the new floor."""
        for counter in range(1, 11):
            guard.check(ALICE_ID, counter)

        guard.check(ALICE_ID, 1000)

        state = guard.state_for(ALICE_ID)
        assert state.recent == {1000}
        assert guard.check(ALICE_ID, 10) is ReplayVerdict.STALE

    def test_memory_bounded(self, guard) -> None:
        """Tracked counters never exceed the window span."""
        for counter in range(1, 5000):
            guard.check(ALICE_ID, counter)
            state = guard.state_for(ALICE_ID)
            assert len(state.recent) <= REPLAY_WINDOW + 1
            assert min(state.recent) >= state.high_water_mark - REPLAY_WINDOW

    def test_first_counter_zero(self, guard) -> None:
        """Counter zero is a valid first counter."""
        assert guard.check(ALICE_ID, 0).accepted
        assert guard.check(ALICE_ID, 0) is ReplayVerdict.DUPLICATE


class TestReplayGuardSenders:
    """Test per-sender isolation and lifecycle."""

    def test_senders_independent(self, guard) -> None:
        """The same counter from two senders is accepted for each."""
        assert guard.check(ALICE_ID, 1).accepted
        assert guard.check(BOB_ID, 1).accepted
        assert len(guard) == 2

    def test_forget(self, guard) -> None:
        """Forgetting a sender restarts its window."""
        guard.check(ALICE_ID, 1)
        guard.forget(ALICE_ID)

        assert ALICE_ID not in guard
        assert guard.check(ALICE_ID, 1).accepted

    def test_clear(self, guard) -> None:
        """Clearing drops every sender."""
        guard.check(ALICE_ID, 1)
        guard.check(BOB_ID, 1)
        guard.clear()

        assert len(guard) == 0

    def test_guards_do_not_share_state(self) -> None:
        """Two guards never see each other's counters."""
        first, second = ReplayGuard(), ReplayGuard()
        first.check(ALICE_ID, 1)
        assert second.check(ALICE_ID, 1).accepted

    def test_custom_window(self) -> None:
        """A smaller window narrows the accepted range."""
        guard = ReplayGuard(window=4)
        guard.check(ALICE_ID, 10)
        assert guard.check(ALICE_ID, 6).accepted
        assert guard.check(ALICE_ID, 5) is ReplayVerdict.STALE

    def test_invalid_window(self) -> None:
        """Windows must be positive."""
        with pytest.raises(ValueError):
            ReplayGuard(window=0)

    def test_require_raises_on_replay(self, guard) -> None:
        """require() raises with the rejection reason."""
        guard.require(ALICE_ID, 1)
        with pytest.raises(ReplayRejectedError, match="duplicate"):
            guard.require(ALICE_ID, 1)
