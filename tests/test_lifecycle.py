"""Tests for ProcessLifecycle."""

import threading

import pytest

from nativeproc.core import ProcessLifecycle, ProcessState


class TestProcessLifecycle:
    """Tests for monotonic lifecycle transitions."""

    def test_initial_state(self):
        """Test that a new lifecycle starts in STARTING."""
        lifecycle = ProcessLifecycle()
        assert lifecycle.state == ProcessState.STARTING
        assert not lifecycle.is_dead

    def test_forward_transitions(self):
        """Test the normal STARTING -> DEAD progression."""
        lifecycle = ProcessLifecycle()
        for state in (
            ProcessState.READY,
            ProcessState.RUNNING,
            ProcessState.TERMINATING,
            ProcessState.DEAD,
        ):
            assert lifecycle.advance(state)
            assert lifecycle.state == state
        assert lifecycle.is_dead

    def test_backward_transition_ignored(self):
        """Test that moving backwards is refused."""
        lifecycle = ProcessLifecycle()
        lifecycle.advance(ProcessState.RUNNING)

        assert not lifecycle.advance(ProcessState.READY)
        assert lifecycle.state == ProcessState.RUNNING

    def test_jump_to_dead(self):
        """Test that any state may jump straight to DEAD."""
        lifecycle = ProcessLifecycle()
        assert lifecycle.mark_dead()
        assert lifecycle.state == ProcessState.DEAD

    def test_mark_dead_idempotent(self):
        """Test that repeated deaths are no-ops."""
        lifecycle = ProcessLifecycle()
        assert lifecycle.mark_dead()
        assert not lifecycle.mark_dead()
        assert lifecycle.state == ProcessState.DEAD

    def test_listeners_see_each_transition_once(self):
        """Test listener notification."""
        lifecycle = ProcessLifecycle()
        seen = []
        lifecycle.add_listener(lambda old, new: seen.append((old, new)))

        lifecycle.advance(ProcessState.READY)
        lifecycle.advance(ProcessState.READY)
        lifecycle.mark_dead()
        lifecycle.mark_dead()

        assert seen == [
            (ProcessState.STARTING, ProcessState.READY),
            (ProcessState.READY, ProcessState.DEAD),
        ]

    def test_concurrent_mark_dead_transitions_once(self):
        """Test that racing death observers transition exactly once."""
        lifecycle = ProcessLifecycle()
        results = []
        barrier = threading.Barrier(8)

        def observer():
            barrier.wait()
            results.append(lifecycle.mark_dead())

        threads = [threading.Thread(target=observer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_states_are_ordered(self):
        """Test enum ordering used by advance()."""
        assert ProcessState.STARTING < ProcessState.READY < ProcessState.RUNNING
        assert ProcessState.RUNNING < ProcessState.TERMINATING < ProcessState.DEAD

    @pytest.mark.parametrize("initial", list(ProcessState))
    def test_initial_dead_sets_event(self, initial):
        """Test that starting in DEAD is reflected by is_dead."""
        lifecycle = ProcessLifecycle(initial)
        assert lifecycle.is_dead == (initial == ProcessState.DEAD)
