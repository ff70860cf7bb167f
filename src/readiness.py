"""Readiness polling and reachability checks.

wait_for() is the single blocking primitive used by steps that must wait on
an external condition: a systemd unit becoming active, pods turning Ready, a
CRD being registered, an endpoint answering.
"""

import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import requests
import urllib3

from common import ExecutionContext
from errors import CancelledError, StepError, WaitTimeoutError

logger = logging.getLogger(__name__)

# Endpoints are probed for reachability only, often behind self-signed certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

DEFAULT_POLL_INTERVAL = 3.0


def wait_for(
    ctx: ExecutionContext,
    predicate: Callable[[], bool],
    timeout: float,
    interval: float = DEFAULT_POLL_INTERVAL,
    description: str = 'condition'
) -> None:
    """Poll predicate until it returns True.

    Linear polling, no backoff. Raises WaitTimeoutError once timeout elapses
    (or the context deadline passes) and CancelledError when ctx is
    cancelled. A predicate that raises counts as "not yet"; the last such
    error is chained to the timeout.
    """
    logger.debug(f"Waiting up to {timeout}s for {description}...")
    start = time.monotonic()
    last_error: Optional[Exception] = None

    while True:
        if ctx.cancelled:
            raise CancelledError(f"cancelled while waiting for {description}")
        try:
            if predicate():
                logger.debug(f"{description} ready after {time.monotonic() - start:.1f}s")
                return
            last_error = None
        except (CancelledError, WaitTimeoutError):
            raise
        except Exception as e:
            logger.debug(f"{description} not ready: {e}")
            last_error = e

        elapsed = time.monotonic() - start
        remaining = timeout - elapsed
        ctx_remaining = ctx.remaining()
        if ctx_remaining is not None:
            remaining = min(remaining, ctx_remaining)
        if remaining <= 0:
            err = WaitTimeoutError(f"timed out after {elapsed:.1f}s waiting for {description}")
            if last_error is not None:
                raise err from last_error
            raise err

        try:
            ctx.sleep(min(interval, remaining))
        except WaitTimeoutError:
            # context deadline reached mid-sleep; report it as our timeout
            continue


def check_endpoint_reachable(ctx: ExecutionContext, url: str, timeout: float = 10.0) -> None:
    """Raise StepError unless url answers with any HTTP response.

    TLS verification is skipped: only reachability matters here.
    """
    ctx.check()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise StepError(f"invalid endpoint URL: {url!r}")
    try:
        requests.head(url, timeout=timeout, verify=False, allow_redirects=True)
    except requests.exceptions.Timeout as e:
        raise WaitTimeoutError(f"timeout connecting to {url}") from e
    except requests.exceptions.RequestException as e:
        raise StepError(f"cannot reach {url}: {e}") from e


def wait_for_endpoint(ctx: ExecutionContext, url: str, timeout: float = 60.0, interval: float = 5.0) -> None:
    """Block until url is reachable."""
    def reachable() -> bool:
        try:
            check_endpoint_reachable(ctx, url, timeout=min(10.0, interval * 2))
        except WaitTimeoutError:
            # a slow probe is "not yet", only the overall budget times out
            return False
        return True

    wait_for(ctx, reachable, timeout, interval, description=f"endpoint {url}")

