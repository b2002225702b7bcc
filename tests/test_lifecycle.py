"""Unit tests for StreamLifecycleManager."""

from unittest.mock import MagicMock

import pytest

from fancycam.core.contracts import ClientHandle, StreamDirection
from fancycam.device.lifecycle import StreamLifecycleManager


@pytest.fixture
def hooks():
    return MagicMock(name="on_first_start"), MagicMock(name="on_last_stop")


class TestSourceLifecycle:

    def test_first_start_and_last_stop_fire_once(self, hooks):
        start, stop = hooks
        manager = StreamLifecycleManager(StreamDirection.SOURCE, start, stop)

        assert manager.start_stream()
        assert manager.start_stream()
        assert manager.count == 2
        start.assert_called_once()

        manager.stop_stream()
        stop.assert_not_called()
        manager.stop_stream()
        stop.assert_called_once()
        assert not manager.is_streaming

    def test_stop_when_stopped_is_ignored(self, hooks):
        start, stop = hooks
        manager = StreamLifecycleManager(StreamDirection.SOURCE, start, stop)
        assert manager.stop_stream() is False
        assert manager.count == 0
        stop.assert_not_called()

    def test_source_needs_no_client(self, hooks):
        manager = StreamLifecycleManager(StreamDirection.SOURCE, *hooks)
        assert manager.start_stream()
        assert manager.state.client is None


class TestSinkLifecycle:

    def test_start_without_client_is_refused(self, hooks):
        start, stop = hooks
        manager = StreamLifecycleManager(StreamDirection.SINK, start, stop)
        assert manager.start_stream() is False
        assert manager.count == 0
        start.assert_not_called()

    def test_authorization_records_client(self, hooks):
        manager = StreamLifecycleManager(StreamDirection.SINK, *hooks)
        client = ClientHandle("abc", "test")
        assert manager.authorized_to_start_stream(client)
        assert manager.state.client == client

    def test_consuming_flag_follows_transitions(self, hooks):
        start, stop = hooks
        manager = StreamLifecycleManager(StreamDirection.SINK, start, stop)
        manager.authorized_to_start_stream(ClientHandle("abc"))

        manager.start_stream()
        assert manager.state.consuming
        start.assert_called_once()

        manager.stop_stream()
        assert not manager.state.consuming
        stop.assert_called_once()

    def test_restart_after_stop(self, hooks):
        start, stop = hooks
        manager = StreamLifecycleManager(StreamDirection.SINK, start, stop)
        manager.authorized_to_start_stream(ClientHandle("abc"))
        manager.start_stream()
        manager.stop_stream()
        manager.start_stream()
        assert start.call_count == 2
