"""Poll-until-settled wait loop shared by every lifecycle operation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, NoReturn

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from topic_provider.config.models import PollPolicy
from topic_provider.errors import RemoteOperationError, WaitTimeoutError

logger = structlog.get_logger()

PENDING = "pending"
FAILED = "failed"

PollFn = Callable[[], Awaitable[tuple[Any, str]]]


async def wait_for(
    poll_fn: PollFn,
    target: Iterable[str],
    *,
    policy: PollPolicy,
    pending: Iterable[str] | None = None,
    description: str = "resource",
) -> Any:
    """Poll *poll_fn* until it reports a state in *target*.

    *poll_fn* returns ``(payload, state)``. The loop sleeps
    ``policy.delay_seconds`` once, then polls every
    ``policy.interval_seconds``. It returns the payload of the settling poll.

    - ``state == "failed"`` raises :class:`RemoteOperationError` at once.
    - An exception raised by *poll_fn* propagates at once.
    - If *pending* is given, any state outside ``pending | target`` is a
      failure too.
    - Once ``policy.timeout_seconds`` have elapsed since the call, initial
      delay included, :class:`WaitTimeoutError` is raised with the last
      observed payload. It is never raised earlier. A delay at least as long
      as the timeout expires without polling.

    Cancelling the calling task interrupts the sleep immediately.
    """
    targets = frozenset(target)
    pendings = frozenset(pending) if pending is not None else None
    log = logger.bind(waiting_for=description)

    async def _poll() -> tuple[Any, str]:
        payload, state = await poll_fn()
        log.debug("waiter.poll", state=state)
        if state == FAILED:
            raise RemoteOperationError(f"{description} failed", payload=payload)
        if state not in targets and pendings is not None and state not in pendings:
            raise RemoteOperationError(
                f"unexpected state {state!r} while waiting for {description}",
                payload=payload,
            )
        return payload, state

    def _timed_out(retry_state: RetryCallState) -> NoReturn:
        assert retry_state.outcome is not None
        payload, state = retry_state.outcome.result()
        log.warning(
            "waiter.timeout",
            attempts=retry_state.attempt_number,
            last_state=state,
            timeout=policy.timeout_seconds,
        )
        raise WaitTimeoutError(
            description,
            timeout=policy.timeout_seconds,
            attempts=retry_state.attempt_number,
            last_state=state,
            last_payload=payload,
        )

    started = time.monotonic()
    if policy.delay_seconds >= policy.timeout_seconds:
        await asyncio.sleep(policy.timeout_seconds)
        log.warning("waiter.timeout", attempts=0, timeout=policy.timeout_seconds)
        raise WaitTimeoutError(description, timeout=policy.timeout_seconds, attempts=0)
    if policy.delay_seconds:
        await asyncio.sleep(policy.delay_seconds)

    # The deadline covers the initial delay
    remaining = policy.timeout_seconds - (time.monotonic() - started)
    retrying = AsyncRetrying(
        stop=stop_after_delay(max(remaining, 0.0)),
        wait=wait_fixed(policy.interval_seconds),
        retry=retry_if_result(lambda result: result[1] not in targets),
        retry_error_callback=_timed_out,
    )
    payload, state = await retrying(_poll)
    log.debug("waiter.settled", state=state)
    return payload
