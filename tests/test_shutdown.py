"""
Tests for the shutdown coordinator.
"""

import signal
import threading
import pytest
from unittest.mock import patch
from src.tsquery.shutdown import ShutdownCoordinator


class TestShutdownCoordinator:
    """Test cases for the cancellation and completion signals."""

    def setup_method(self):
        self.coordinator = ShutdownCoordinator()

    def test_initial_state(self):
        assert not self.coordinator.cancelled
        assert not self.coordinator.completed
        assert self.coordinator.completion_count == 0

    def test_cancel_is_idempotent(self):
        self.coordinator.cancel()
        self.coordinator.cancel()

        assert self.coordinator.cancelled
        assert self.coordinator.wait_cancelled(0)

    def test_wait_cancelled_times_out(self):
        assert self.coordinator.wait_cancelled(0.01) is False

    def test_cancel_from_other_thread(self):
        thread = threading.Thread(target=self.coordinator.cancel)
        thread.start()

        assert self.coordinator.wait_cancelled(2.0)
        thread.join()

    def test_completion_signalled_once(self):
        self.coordinator.mark_completed()

        assert self.coordinator.completed
        assert self.coordinator.wait_completed(0)
        with pytest.raises(RuntimeError):
            self.coordinator.mark_completed()
        assert self.coordinator.completion_count == 1

    def test_wait_completed_blocks_until_marked(self):
        assert self.coordinator.wait_completed(0.01) is False

        timer = threading.Timer(0.05, self.coordinator.mark_completed)
        timer.start()
        assert self.coordinator.wait_completed(2.0)
        timer.join()

    def test_completion_does_not_imply_cancellation(self):
        self.coordinator.mark_completed()
        assert not self.coordinator.cancelled

    def test_install_signal_handlers(self):
        with patch('signal.signal') as mock_signal:
            self.coordinator.install_signal_handlers((signal.SIGINT,))

        mock_signal.assert_called_once()
        signum, handler = mock_signal.call_args[0]
        assert signum == signal.SIGINT

        handler(signal.SIGINT, None)
        assert self.coordinator.cancelled
