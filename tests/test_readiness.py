#!/usr/bin/env python3
"""Tests for readiness polling and reachability checks."""

import threading
from unittest.mock import patch

import pytest
import requests

from common import ExecutionContext
from errors import CancelledError, StepError, WaitTimeoutError
from readiness import check_endpoint_reachable, wait_for, wait_for_endpoint


class TestWaitFor:
    """Linear poller."""

    def test_returns_when_ready(self, ctx):
        answers = iter([False, False, True])
        wait_for(ctx, lambda: next(answers), timeout=1, interval=0.01)

    def test_times_out(self, ctx):
        with pytest.raises(WaitTimeoutError):
            wait_for(ctx, lambda: False, timeout=0.05, interval=0.01, description='never')

    def test_predicate_errors_count_as_not_ready(self, ctx):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("not yet")
            return True

        wait_for(ctx, flaky, timeout=1, interval=0.01)
        assert len(calls) == 3

    def test_last_error_chained_on_timeout(self, ctx):
        def broken():
            raise RuntimeError("api down")

        with pytest.raises(WaitTimeoutError) as exc:
            wait_for(ctx, broken, timeout=0.05, interval=0.01)
        assert isinstance(exc.value.__cause__, RuntimeError)

    def test_cancel_returns_promptly(self):
        ctx = ExecutionContext()
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()
        with pytest.raises(CancelledError):
            wait_for(ctx, lambda: False, timeout=30, interval=10)
        timer.cancel()

    def test_context_deadline_caps_timeout(self):
        ctx = ExecutionContext().with_timeout(0.05)
        with pytest.raises(WaitTimeoutError):
            wait_for(ctx, lambda: False, timeout=30, interval=0.01)


class TestCheckEndpointReachable:
    """HTTP reachability."""

    def test_any_response_is_reachable(self, ctx):
        with patch('readiness.requests.head') as mock_head:
            mock_head.return_value.status_code = 401
            check_endpoint_reachable(ctx, 'https://vault.example.com')
        assert mock_head.call_args[1]['verify'] is False

    def test_timeout(self, ctx):
        with patch('readiness.requests.head', side_effect=requests.exceptions.ConnectTimeout("slow")):
            with pytest.raises(WaitTimeoutError):
                check_endpoint_reachable(ctx, 'https://vault.example.com')

    def test_connection_error(self, ctx):
        with patch('readiness.requests.head', side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(StepError):
                check_endpoint_reachable(ctx, 'https://vault.example.com')

    def test_invalid_url(self, ctx):
        with pytest.raises(StepError):
            check_endpoint_reachable(ctx, 'not a url')

    def test_wait_for_endpoint_retries(self, ctx):
        side_effect = [requests.exceptions.ConnectionError("refused"), None]
        with patch('readiness.requests.head', side_effect=side_effect) as mock_head:
            wait_for_endpoint(ctx, 'https://prom.example.com', timeout=1, interval=0.01)
        assert mock_head.call_count == 2
