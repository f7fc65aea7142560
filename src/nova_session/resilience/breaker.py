"""
nova_session.resilience.breaker

Circuit breaker guarding the remote profile service.

Responsibilities:
- Model breaker state as an immutable value with pure transition functions
  (`admit`, `transition`) so every edge can be tested without network mocking.
- Wrap that value in `CircuitBreaker`, a small stateful gate with an injectable clock.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from nova_session.errors import CircuitOpenError
from nova_session.observability.logging import get_logger

log = get_logger(__name__)


class BreakerState(enum.StrEnum):
    closed = "CLOSED"
    open = "OPEN"
    half_open = "HALF_OPEN"


class Outcome(enum.StrEnum):
    success = "success"
    failure = "failure"


@dataclass(frozen=True, slots=True)
class BreakerPolicy:
    failure_threshold: int = 3
    cooldown: float = 30.0
    backoff_factor: float = 1.0
    max_cooldown: float = 300.0


@dataclass(frozen=True, slots=True)
class CircuitBreakerState:
    state: BreakerState = BreakerState.closed
    failure_count: int = 0
    next_attempt_at: float = 0.0
    # Current cooldown; grows on failed trials when backoff_factor > 1.
    cooldown: float | None = None
    trial_in_flight: bool = False


def admit(state: CircuitBreakerState, *, now: float) -> tuple[CircuitBreakerState, bool]:
    """
    Decide whether a call may go out. Returns the (possibly advanced) state and the verdict.

    OPEN moves to HALF_OPEN once the cooldown has elapsed and admits exactly one trial;
    further calls are refused until that trial reports back.
    """

    if state.state is BreakerState.closed:
        return state, True
    if state.state is BreakerState.open:
        if now < state.next_attempt_at:
            return state, False
        return replace(state, state=BreakerState.half_open, trial_in_flight=True), True
    if state.trial_in_flight:
        return state, False
    return replace(state, trial_in_flight=True), True


def transition(
    state: CircuitBreakerState,
    outcome: Outcome,
    *,
    now: float,
    policy: BreakerPolicy,
) -> CircuitBreakerState:
    if outcome is Outcome.success:
        return CircuitBreakerState(cooldown=None)

    if state.state is BreakerState.half_open:
        # Failed trial: re-arm, optionally growing the cooldown.
        current = state.cooldown if state.cooldown is not None else policy.cooldown
        cooldown = min(current * policy.backoff_factor, policy.max_cooldown)
        return CircuitBreakerState(
            state=BreakerState.open,
            failure_count=state.failure_count + 1,
            next_attempt_at=now + cooldown,
            cooldown=cooldown,
        )

    failures = state.failure_count + 1
    if failures >= policy.failure_threshold:
        cooldown = state.cooldown if state.cooldown is not None else policy.cooldown
        return CircuitBreakerState(
            state=BreakerState.open,
            failure_count=failures,
            next_attempt_at=now + cooldown,
            cooldown=cooldown,
        )
    return replace(state, failure_count=failures)


class CircuitBreaker:
    def __init__(
        self,
        *,
        policy: BreakerPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "profile",
    ) -> None:
        self._policy = policy or BreakerPolicy()
        self._clock = clock
        self._name = name
        self._state = CircuitBreakerState()

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def before_call(self) -> None:
        """Raise `CircuitOpenError` when the call must not go out. Refusals are not failures."""

        now = self._clock()
        new_state, allowed = admit(self._state, now=now)
        if new_state.state is not self._state.state:
            log.info("breaker.half_open", breaker=self._name)
        self._state = new_state
        if not allowed:
            retry_at = self._state.next_attempt_at
            raise CircuitOpenError(retry_at, retry_in=max(0.0, retry_at - now))

    def record_success(self) -> None:
        previous = self._state.state
        self._state = transition(
            self._state, Outcome.success, now=self._clock(), policy=self._policy
        )
        if previous is not BreakerState.closed:
            log.info("breaker.closed", breaker=self._name)

    def record_failure(self) -> None:
        previous = self._state.state
        self._state = transition(
            self._state, Outcome.failure, now=self._clock(), policy=self._policy
        )
        if self._state.state is BreakerState.open and previous is not BreakerState.open:
            log.warning(
                "breaker.opened",
                breaker=self._name,
                failure_count=self._state.failure_count,
                cooldown=self._state.cooldown,
            )

    def release(self) -> None:
        # A trial that never reported (cancelled) must not wedge HALF_OPEN.
        if self._state.trial_in_flight:
            self._state = replace(self._state, trial_in_flight=False)

    def reset(self) -> None:
        self._state = CircuitBreakerState()
        log.info("breaker.reset", breaker=self._name)

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.state.value,
            "failure_count": self._state.failure_count,
            "next_attempt_at": self._state.next_attempt_at,
            "cooldown": self._state.cooldown,
        }


# --- Module Notes -----------------------------------------------------------
# The profile loader reports one outcome per load (after retries), so the breaker
# counts failed loads, not individual transport attempts.
