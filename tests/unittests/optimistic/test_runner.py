from __future__ import annotations

import asyncio

import pytest

from clinsync.optimistic import (
    OptimisticUpdateRolledBack,
    OptimisticUpdateTracker,
    RollbackReason,
    TrackerConfig,
    UpdateState,
    run_optimistic,
)


def make_tracker(**overrides) -> OptimisticUpdateTracker:
  settings = dict(
      max_retries=2,
      retry_delay_seconds=0.01,
      auto_rollback_enabled=False,
      eviction_delay_seconds=1.0,
  )
  settings.update(overrides)
  return OptimisticUpdateTracker(TrackerConfig(**settings))


class FlakyOperation:
  """Fails a fixed number of times before returning a result."""

  def __init__(self, failures: int, result):
    self.failures = failures
    self.result = result
    self.calls = 0

  async def __call__(self):
    self.calls += 1
    if self.calls <= self.failures:
      raise ConnectionError(f"network error {self.calls}")
    return self.result


@pytest.mark.asyncio
async def test_successful_operation_confirms() -> None:
  tracker = make_tracker()
  operation = FlakyOperation(0, {"is_clocked": True, "record_id": "r1"})

  result = await run_optimistic(
      tracker, "clock-status-s1", "clock-in", {"is_clocked": True}, operation
  )

  assert result == {"is_clocked": True, "record_id": "r1"}
  assert operation.calls == 1
  assert tracker.get_update("clock-status-s1").state == UpdateState.CONFIRMED
  assert tracker.get_value("clock-status-s1") == result


@pytest.mark.asyncio
async def test_operation_is_retried_after_promotion() -> None:
  tracker = make_tracker()
  operation = FlakyOperation(2, "saved")
  states = []
  tracker.subscribe("a", lambda u: states.append(u.state))

  result = await run_optimistic(tracker, "a", "status-update", "guess", operation)

  assert result == "saved"
  assert operation.calls == 3
  assert tracker.get_update("a").retry_count == 2
  assert states == [
      UpdateState.PENDING,
      UpdateState.FAILED,
      UpdateState.PENDING,
      UpdateState.FAILED,
      UpdateState.PENDING,
      UpdateState.CONFIRMED,
  ]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_rolled_back() -> None:
  tracker = make_tracker()
  operation = FlakyOperation(10, "never")

  with pytest.raises(OptimisticUpdateRolledBack) as exc_info:
    await run_optimistic(tracker, "a", "clock-out", False, operation, True)

  assert operation.calls == 3
  assert isinstance(exc_info.value.__cause__, ConnectionError)
  assert exc_info.value.update_id == "a"
  assert exc_info.value.record.state == UpdateState.ROLLED_BACK
  assert (
      exc_info.value.record.rollback_reason
      == RollbackReason.MAX_RETRIES_EXCEEDED
  )
  assert tracker.get_value("a") is True


@pytest.mark.asyncio
async def test_rollback_during_operation_stops_retries() -> None:
  tracker = make_tracker()
  calls = []

  async def operation():
    calls.append(1)
    tracker.rollback("a", RollbackReason.MANUAL)
    raise ConnectionError("network")

  with pytest.raises(OptimisticUpdateRolledBack) as exc_info:
    await run_optimistic(tracker, "a", "clock-in", True, operation, False)

  assert len(calls) == 1
  assert exc_info.value.record.rollback_reason == RollbackReason.MANUAL
  assert tracker.get_value("a") is False


@pytest.mark.asyncio
async def test_rollback_while_waiting_for_retry() -> None:
  tracker = make_tracker(retry_delay_seconds=0.2)
  operation = FlakyOperation(1, "saved")
  asyncio.get_running_loop().call_later(0.05, tracker.rollback, "a")

  with pytest.raises(OptimisticUpdateRolledBack):
    await run_optimistic(tracker, "a", "clock-in", True, operation, False)

  assert operation.calls == 1
  assert tracker.get_update("a").rollback_reason == RollbackReason.MANUAL
