"""
Test suite for Deadline component
Following AAA pattern and descriptive naming
"""

import pytest
from unittest.mock import Mock
from erp_sync.deadline import Deadline, RunTimeoutError, CallTimeoutError


def make_clock(start: float = 1000.0) -> Mock:
    return Mock(return_value=start)


class TestDeadline:
    """Test suite for run and call deadlines"""

    def test_remaining_counts_down_with_the_clock(self):
        """
        Test that remaining time shrinks as the clock advances
        """
        # Arrange
        clock = make_clock()
        deadline = Deadline(60, clock=clock)

        # Act
        clock.return_value = 1045.0

        # Assert
        assert deadline.remaining() == pytest.approx(15.0)
        assert deadline.expired is False

    def test_remaining_never_goes_negative(self):
        # Arrange
        clock = make_clock()
        deadline = Deadline(10, clock=clock)

        # Act
        clock.return_value = 2000.0

        # Assert
        assert deadline.remaining() == 0.0
        assert deadline.expired is True

    def test_child_never_outlives_parent(self):
        """
        Test that a child asking for more time than the parent has left is capped
        """
        # Arrange
        clock = make_clock()
        parent = Deadline(30, clock=clock)

        # Act
        child = parent.child(300)

        # Assert
        assert child.expires_at == parent.expires_at
        assert child.parent is parent

    def test_child_inherits_parent_clock(self):
        # Arrange
        clock = make_clock()
        parent = Deadline(600, clock=clock)
        child = parent.child(10)

        # Act
        clock.return_value = 1011.0

        # Assert
        assert child.expired is True
        assert parent.expired is False

    def test_child_timeout_raises_call_timeout_when_only_child_elapsed(self):
        """
        Test that a child running out on its own is a call timeout, not a run timeout
        """
        # Arrange
        clock = make_clock()
        parent = Deadline(600, clock=clock)
        child = parent.child(5)
        clock.return_value = 1006.0

        # Act & Assert
        with pytest.raises(CallTimeoutError):
            child.timeout()

    def test_child_timeout_raises_run_timeout_when_parent_elapsed(self):
        """
        Test that parent expiry propagates as cancellation into the child
        """
        # Arrange
        clock = make_clock()
        parent = Deadline(5, clock=clock)
        child = parent.child(300)
        clock.return_value = 1010.0

        # Act & Assert
        assert child.cancelled is True
        with pytest.raises(RunTimeoutError):
            child.timeout()

    def test_root_raise_if_cancelled_checks_its_own_expiry(self):
        # Arrange
        clock = make_clock()
        deadline = Deadline(5, clock=clock)

        # Act & Assert
        deadline.raise_if_cancelled()
        clock.return_value = 1005.0
        with pytest.raises(RunTimeoutError):
            deadline.raise_if_cancelled()

    def test_timeout_returns_remaining_seconds_while_alive(self):
        # Arrange
        clock = make_clock()
        parent = Deadline(600, clock=clock)
        child = parent.child(30)
        clock.return_value = 1010.0

        # Act
        timeout = child.timeout()

        # Assert
        assert timeout == pytest.approx(20.0)

    def test_call_timeout_is_a_builtin_timeout_error(self):
        # Assert
        assert issubclass(CallTimeoutError, TimeoutError)
        assert not issubclass(RunTimeoutError, TimeoutError)
