"""Tests for FlushParams and FlushCoordinator."""

import threading

import pytest

from nativeproc.core import (
    FlushAcknowledgement,
    FlushCoordinator,
    FlushParams,
    FlushState,
)


# =============================================================================
# FlushParams Tests
# =============================================================================


class TestFlushParams:
    """Tests for FlushParams validation."""

    def test_defaults(self):
        """Test that default params request a plain flush."""
        params = FlushParams()
        assert not params.calc_interim
        assert not params.should_advance_time
        assert not params.should_skip_time

    def test_interim_with_range(self):
        """Test a valid interim time range."""
        params = FlushParams(calc_interim=True, start="100", end="200")
        assert params.start == "100"
        assert params.end == "200"

    def test_range_without_interim_rejected(self):
        """Test that start/end require calc_interim."""
        with pytest.raises(ValueError, match="calc_interim"):
            FlushParams(start="100", end="200")

    def test_end_without_interim_rejected(self):
        """Test that end alone without calc_interim is rejected."""
        with pytest.raises(ValueError):
            FlushParams(end="200")

    def test_start_without_end_rejected(self):
        """Test that start and end must come together."""
        with pytest.raises(ValueError, match="together"):
            FlushParams(calc_interim=True, start="100")

    def test_end_not_after_start_rejected(self):
        """Test that end <= start is rejected."""
        with pytest.raises(ValueError, match="after start"):
            FlushParams(calc_interim=True, start="200", end="200")
        with pytest.raises(ValueError, match="after start"):
            FlushParams(calc_interim=True, start="300", end="200")

    def test_numeric_comparison(self):
        """Test that times are compared numerically, not as strings."""
        params = FlushParams(calc_interim=True, start="9", end="10")
        assert params.end == "10"

    def test_non_numeric_range_rejected(self):
        """Test that non-numeric times are rejected."""
        with pytest.raises(ValueError, match="numeric"):
            FlushParams(calc_interim=True, start="yesterday", end="200")

    def test_time_controls(self):
        """Test advance/skip flags."""
        params = FlushParams(advance_time="1000", skip_time="900")
        assert params.should_advance_time
        assert params.should_skip_time

    def test_frozen(self):
        """Test that params are immutable."""
        params = FlushParams()
        with pytest.raises(AttributeError):
            params.calc_interim = True


# =============================================================================
# FlushCoordinator Tests
# =============================================================================


class TestFlushCoordinator:
    """Tests for token issue and resolution."""

    def test_tokens_are_counter_strings(self):
        """Test token format."""
        coordinator = FlushCoordinator()
        assert [coordinator.new_token() for _ in range(3)] == ["1", "2", "3"]

    def test_prefix(self):
        """Test salted tokens."""
        coordinator = FlushCoordinator(prefix="job-a-")
        assert coordinator.new_token() == "job-a-1"

    def test_tokens_distinct(self):
        """Test that tokens are pairwise distinct."""
        coordinator = FlushCoordinator()
        tokens = [coordinator.new_token() for _ in range(1000)]
        assert len(set(tokens)) == 1000

    def test_tokens_distinct_across_threads(self):
        """Test token uniqueness under concurrent allocation."""
        coordinator = FlushCoordinator()
        tokens = []
        lock = threading.Lock()

        def allocate():
            local = [coordinator.new_token() for _ in range(200)]
            with lock:
                tokens.extend(local)

        threads = [threading.Thread(target=allocate) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(tokens)) == 1000

    def test_new_token_pending(self):
        """Test that a new token is PENDING."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()
        assert coordinator.state(token) == FlushState.PENDING
        assert coordinator.pending_count == 1

    def test_acknowledge_completes(self):
        """Test that a matching acknowledgment completes the token."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()

        assert coordinator.acknowledge(FlushAcknowledgement(flush_id=token))
        assert coordinator.state(token) == FlushState.COMPLETED
        assert coordinator.pending_count == 0

    def test_acknowledge_out_of_order(self):
        """Test that acknowledgments are matched by token, not sequence."""
        coordinator = FlushCoordinator()
        first = coordinator.new_token()
        second = coordinator.new_token()

        coordinator.acknowledge(FlushAcknowledgement(flush_id=second))

        assert coordinator.state(first) == FlushState.PENDING
        assert coordinator.state(second) == FlushState.COMPLETED

    def test_unknown_ack_ignored(self):
        """Test that an unknown token is ignored."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()

        assert not coordinator.acknowledge(FlushAcknowledgement(flush_id="999"))
        assert coordinator.state(token) == FlushState.PENDING

    def test_duplicate_ack_ignored(self):
        """Test that a second acknowledgment changes nothing."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()
        coordinator.acknowledge(FlushAcknowledgement(flush_id=token))

        assert not coordinator.acknowledge(FlushAcknowledgement(flush_id=token))
        assert coordinator.state(token) == FlushState.COMPLETED

    def test_abandon_all(self):
        """Test that death abandons only pending tokens."""
        coordinator = FlushCoordinator()
        done = coordinator.new_token()
        pending = coordinator.new_token()
        coordinator.acknowledge(FlushAcknowledgement(flush_id=done))

        assert coordinator.abandon_all() == [pending]
        assert coordinator.state(done) == FlushState.COMPLETED
        assert coordinator.state(pending) == FlushState.ABANDONED

    def test_abandon_all_idempotent(self):
        """Test that a second abandon_all abandons nothing."""
        coordinator = FlushCoordinator()
        coordinator.new_token()
        assert len(coordinator.abandon_all()) == 1
        assert coordinator.abandon_all() == []

    def test_late_ack_after_abandon_ignored(self):
        """Test that ABANDONED is never flipped to COMPLETED."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()
        coordinator.abandon_all()

        assert not coordinator.acknowledge(FlushAcknowledgement(flush_id=token))
        assert coordinator.state(token) == FlushState.ABANDONED

    def test_token_after_close_is_abandoned(self):
        """Test that tokens issued after death are born ABANDONED."""
        coordinator = FlushCoordinator()
        coordinator.abandon_all()

        token = coordinator.new_token()
        assert coordinator.state(token) == FlushState.ABANDONED

    def test_abandon_single(self):
        """Test abandoning one token leaves the others pending."""
        coordinator = FlushCoordinator()
        first = coordinator.new_token()
        second = coordinator.new_token()

        assert coordinator.abandon(first)
        assert not coordinator.abandon(first)
        assert not coordinator.abandon("unknown")
        assert coordinator.state(first) == FlushState.ABANDONED
        assert coordinator.state(second) == FlushState.PENDING

    def test_unknown_state_raises(self):
        """Test that querying an unknown token raises KeyError."""
        coordinator = FlushCoordinator()
        with pytest.raises(KeyError):
            coordinator.state("nope")

    def test_wait_timeout_returns_pending(self):
        """Test that wait() returns PENDING on timeout."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()
        assert coordinator.wait(token, timeout=0.01) == FlushState.PENDING

    def test_wait_resolved_from_other_thread(self):
        """Test that wait() unblocks when another thread acknowledges."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()

        threading.Timer(
            0.02,
            coordinator.acknowledge,
            args=(FlushAcknowledgement(flush_id=token),),
        ).start()

        assert coordinator.wait(token, timeout=2.0) == FlushState.COMPLETED

    def test_future(self):
        """Test direct access to the underlying future."""
        coordinator = FlushCoordinator()
        token = coordinator.new_token()
        future = coordinator.future(token)

        assert not future.done()
        coordinator.abandon_all()
        assert future.result(timeout=1.0) == FlushState.ABANDONED

    def test_on_resolved_listener(self):
        """Test that the listener sees each resolution exactly once."""
        seen = []
        coordinator = FlushCoordinator(on_resolved=lambda t, s: seen.append((t, s)))
        first = coordinator.new_token()
        second = coordinator.new_token()

        coordinator.acknowledge(FlushAcknowledgement(flush_id=first))
        coordinator.acknowledge(FlushAcknowledgement(flush_id=first))
        coordinator.abandon_all()

        assert seen == [
            (first, FlushState.COMPLETED),
            (second, FlushState.ABANDONED),
        ]

    def test_failing_listener_does_not_block_resolution(self):
        """Test that a raising listener is contained."""
        def listener(token, state):
            raise RuntimeError("boom")

        coordinator = FlushCoordinator(on_resolved=listener)
        token = coordinator.new_token()

        assert coordinator.acknowledge(FlushAcknowledgement(flush_id=token))
        assert coordinator.state(token) == FlushState.COMPLETED

    def test_race_ack_and_abandon_resolves_once(self):
        """Test that concurrent ack and abandon leave exactly one outcome."""
        for _ in range(50):
            seen = []
            coordinator = FlushCoordinator(on_resolved=lambda t, s: seen.append(s))
            token = coordinator.new_token()
            barrier = threading.Barrier(2)

            def ack():
                barrier.wait()
                coordinator.acknowledge(FlushAcknowledgement(flush_id=token))

            def abandon():
                barrier.wait()
                coordinator.abandon_all()

            threads = [threading.Thread(target=ack), threading.Thread(target=abandon)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(seen) == 1
            assert coordinator.state(token) == seen[0]
