"""
Re-running a transaction that lost a uniqueness race.
"""
import pytest
from sqlalchemy.exc import IntegrityError

from conftest import settings
from marketplace.core.retry import backoff_delay, retry_on_conflict


def _conflict():
    return IntegrityError("INSERT INTO player_depotitems", {}, Exception("UNIQUE constraint failed"))


class FlakyOperation:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise _conflict()
        return "done"


@pytest.mark.asyncio
async def test_conflict_is_retried_until_the_operation_succeeds():
    operation = FlakyOperation(failures=2)

    assert await retry_on_conflict(operation, "Delivery order/1", settings) == "done"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_gives_up_after_the_configured_attempts():
    operation = FlakyOperation(failures=10)
    limited = settings.model_copy(update={"CONFLICT_MAX_RETRIES": 3})

    with pytest.raises(IntegrityError):
        await retry_on_conflict(operation, "Delivery order/1", limited)
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    calls = []

    async def operation():
        calls.append(1)
        raise ValueError("bad bundle")

    with pytest.raises(ValueError):
        await retry_on_conflict(operation, "Cart add", settings)
    assert calls == [1]


def test_backoff_doubles_and_stays_under_the_cap():
    tuned = settings.model_copy(update={
        "CONFLICT_BASE_DELAY_MS": 20, "CONFLICT_MAX_DELAY_MS": 100, "CONFLICT_JITTER_MS": 0,
    })
    assert [backoff_delay(n, tuned) for n in range(1, 6)] == [0.02, 0.04, 0.08, 0.1, 0.1]
