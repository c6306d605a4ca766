"""Tests for EventEmitter."""

import pytest

from offline_whisper.events import EventEmitter, EventKind


class TestEventEmitter:
    """Test listener registration and fan-out."""

    def test_emit_to_subscribers(self):
        emitter = EventEmitter()
        received = []
        emitter.subscribe(EventKind.PROGRESS, received.append)
        emitter.subscribe(EventKind.STATUS, lambda msg: received.append(f"status:{msg}"))

        emitter.emit(EventKind.PROGRESS, 0.5)
        emitter.emit(EventKind.STATUS, "ready")

        assert received == [0.5, "status:ready"]

    def test_subscribe_by_name(self):
        """Test that string kinds are accepted."""
        emitter = EventEmitter()
        received = []
        emitter.subscribe("error", received.append)

        emitter.emit(EventKind.ERROR, "boom")

        assert received == ["boom"]

    def test_unsubscribe(self):
        emitter = EventEmitter()
        received = []
        emitter.subscribe(EventKind.COMPLETE, received.append)

        assert emitter.unsubscribe(EventKind.COMPLETE, received.append)
        assert not emitter.unsubscribe(EventKind.COMPLETE, received.append)

        emitter.emit(EventKind.COMPLETE, "result")
        assert received == []

    def test_listener_error_isolated(self):
        """Test that a failing listener does not stop the others."""
        emitter = EventEmitter()
        received = []

        def broken(payload):
            raise RuntimeError("listener bug")

        emitter.subscribe(EventKind.CANCELLED, broken)
        emitter.subscribe(EventKind.CANCELLED, received.append)

        emitter.emit(EventKind.CANCELLED, 3)

        assert received == [3]

    def test_non_callable(self):
        with pytest.raises(TypeError, match="callback must be callable"):
            EventEmitter().subscribe(EventKind.PROGRESS, "not callable")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            EventEmitter().subscribe("bogus", print)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
