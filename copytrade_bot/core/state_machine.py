"""Copy-trade execution states and the pure transition function."""

from dataclasses import dataclass
from enum import Enum

MAX_ATTEMPTS = 3
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 10_000


class ExecutionState(str, Enum):
    QUOTING = "quoting"
    BUILDING = "building"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionState.SUCCEEDED, ExecutionState.FAILED)


class Outcome(str, Enum):
    OK = "ok"
    NO_ROUTE = "no_route"
    FAILURE = "failure"
    IN_DOUBT = "in_doubt"


_NEXT = {
    ExecutionState.QUOTING: ExecutionState.BUILDING,
    ExecutionState.BUILDING: ExecutionState.SIGNING,
    ExecutionState.SIGNING: ExecutionState.SUBMITTING,
    ExecutionState.SUBMITTING: ExecutionState.CONFIRMING,
    ExecutionState.CONFIRMING: ExecutionState.SUCCEEDED,
}


@dataclass(frozen=True)
class Step:
    state: ExecutionState
    try_count: int
    delay_ms: int = 0
    no_route: bool = False


def backoff_delay_ms(try_count: int) -> int:
    """Delay before retrying after the `try_count`-th failure: 1s, 2s, 4s ... capped at 10s."""
    return min(BASE_DELAY_MS * 2 ** (try_count - 1), MAX_DELAY_MS)


def transition(state: ExecutionState, outcome: Outcome, try_count: int) -> Step:
    if state.terminal:
        raise ValueError(f"no transition out of terminal state {state.value}")

    if outcome is Outcome.OK:
        return Step(_NEXT[state], try_count)

    # "No route" is terminal only when the quote itself says so; later in the
    # pipeline it means liquidity moved and counts as an ordinary failure.
    if outcome is Outcome.NO_ROUTE and state is ExecutionState.QUOTING:
        return Step(ExecutionState.FAILED, try_count, no_route=True)

    # A broadcast transaction that may still land is never sent again
    if outcome is Outcome.IN_DOUBT:
        return Step(ExecutionState.FAILED, try_count + 1)

    try_count += 1
    if try_count < MAX_ATTEMPTS:
        return Step(ExecutionState.QUOTING, try_count, backoff_delay_ms(try_count))
    return Step(ExecutionState.FAILED, try_count)
