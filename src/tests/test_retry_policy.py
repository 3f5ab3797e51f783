"""
Test suite for RetryPolicy component
Following AAA pattern and descriptive naming
"""

import pytest
import requests
from unittest.mock import Mock, patch, call
from erp_sync.deadline import Deadline, RunTimeoutError, CallTimeoutError
from erp_sync.retry_policy import RetryPolicy, TransientHTTPError, is_transient, is_retryable_status


def http_error(status_code: int) -> requests.exceptions.HTTPError:
    response = Mock()
    response.status_code = status_code
    return requests.exceptions.HTTPError(f"HTTP {status_code}", response=response)


class TestIsTransient:
    """Test suite for fault classification"""

    @pytest.mark.parametrize("error", [
        TransientHTTPError(500),
        TransientHTTPError(429),
        requests.exceptions.ConnectionError("reset"),
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ChunkedEncodingError("cut"),
        ConnectionResetError("reset by peer"),
        CallTimeoutError("call deadline"),
        http_error(503),
        http_error(429),
    ])
    def test_network_faults_and_retryable_statuses_are_transient(self, error):
        assert is_transient(error) is True

    @pytest.mark.parametrize("error", [
        ValueError("bad"),
        KeyError("missing"),
        RunTimeoutError("run over"),
        http_error(404),
        http_error(400),
    ])
    def test_data_faults_client_errors_and_run_timeouts_are_final(self, error):
        assert is_transient(error) is False

    def test_is_retryable_status_covers_5xx_and_429_only(self):
        assert is_retryable_status(500)
        assert is_retryable_status(599)
        assert is_retryable_status(429)
        assert not is_retryable_status(401)
        assert not is_retryable_status(404)
        assert not is_retryable_status(200)


class TestRetryPolicy:
    """Test suite for exponential backoff retry execution"""

    @pytest.mark.parametrize("fault_count", [0, 1, 2, 3])
    @patch('erp_sync.retry_policy.random.uniform', return_value=0.0)
    @patch('time.sleep')
    def test_execute_succeeds_after_up_to_three_transient_faults(self, mock_sleep, mock_uniform, fault_count):
        """
        Test that N <= 3 transient faults followed by success take N+1 attempts
        and wait at least the backoff series
        """
        # Arrange
        operation = Mock(side_effect=[TransientHTTPError(503)] * fault_count + ["ok"])
        policy = RetryPolicy()

        # Act
        result = policy.execute(operation)

        # Assert
        assert result == "ok"
        assert operation.call_count == fault_count + 1
        slept = sum(c.args[0] for c in mock_sleep.call_args_list)
        assert slept >= sum(2.0 ** n for n in range(1, fault_count + 1))

    @patch('time.sleep')
    def test_execute_raises_last_fault_unchanged_after_budget(self, mock_sleep):
        """
        Test that a fourth transient fault is surfaced as-is
        """
        # Arrange
        faults = [TransientHTTPError(500, f"fault {i}") for i in range(4)]
        operation = Mock(side_effect=faults)
        policy = RetryPolicy()

        # Act & Assert
        with pytest.raises(TransientHTTPError) as exc_info:
            policy.execute(operation)

        assert exc_info.value is faults[-1]
        assert operation.call_count == 4
        assert mock_sleep.call_count == 3

    @patch('time.sleep')
    def test_execute_propagates_non_transient_fault_immediately(self, mock_sleep):
        # Arrange
        operation = Mock(side_effect=ValueError("bad payload"))
        policy = RetryPolicy()

        # Act & Assert
        with pytest.raises(ValueError):
            policy.execute(operation)

        assert operation.call_count == 1
        mock_sleep.assert_not_called()

    @patch('erp_sync.retry_policy.random.uniform', return_value=250.0)
    def test_backoff_delay_is_exponential_plus_jitter(self, mock_uniform):
        # Arrange
        policy = RetryPolicy(backoff_base=2.0, max_jitter_ms=500)

        # Act
        delays = [policy.backoff_delay(attempt) for attempt in (1, 2, 3)]

        # Assert
        assert delays == [pytest.approx(2.25), pytest.approx(4.25), pytest.approx(8.25)]
        mock_uniform.assert_called_with(0, 500)

    @patch('time.sleep')
    def test_execute_stops_retrying_when_delay_would_cross_deadline(self, mock_sleep):
        """
        Test that no retry is scheduled past the caller's remaining time budget
        """
        # Arrange
        clock = Mock(return_value=0.0)
        deadline = Deadline(1.5, clock=clock)
        fault = requests.exceptions.ConnectionError("reset")
        operation = Mock(side_effect=fault)
        policy = RetryPolicy()

        # Act & Assert
        with pytest.raises(requests.exceptions.ConnectionError) as exc_info:
            policy.execute(operation, deadline=deadline)

        assert exc_info.value is fault
        assert operation.call_count == 1
        mock_sleep.assert_not_called()

    @patch('time.sleep')
    def test_execute_raises_run_timeout_when_deadline_already_elapsed(self, mock_sleep):
        # Arrange
        clock = Mock(return_value=0.0)
        deadline = Deadline(10, clock=clock)
        clock.return_value = 11.0
        operation = Mock(return_value="never")

        # Act & Assert
        with pytest.raises(RunTimeoutError):
            RetryPolicy().execute(operation, deadline=deadline)

        operation.assert_not_called()

    @patch('erp_sync.retry_policy.random.uniform', return_value=0.0)
    @patch('time.sleep')
    def test_execute_sleeps_backoff_series_between_attempts(self, mock_sleep, mock_uniform):
        # Arrange
        operation = Mock(side_effect=[TransientHTTPError(500), TransientHTTPError(500), "ok"])

        # Act
        RetryPolicy(backoff_base=2.0).execute(operation)

        # Assert
        assert mock_sleep.call_args_list == [call(2.0), call(4.0)]
