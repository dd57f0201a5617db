from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from clinsync.optimistic import (
    ClockStatus,
    ClockStatusTracker,
    OptimisticUpdateTracker,
    TrackerConfig,
    UpdateKind,
    UpdateState,
    clock_status_key,
)


@pytest.fixture
def clock() -> ClockStatusTracker:
  tracker = OptimisticUpdateTracker(
      TrackerConfig(retry_delay_seconds=0.02, auto_rollback_enabled=False)
  )
  yield ClockStatusTracker(tracker)
  tracker.clear()


def test_clock_status_key() -> None:
  assert clock_status_key("s1") == "clock-status-s1"


@pytest.mark.asyncio
async def test_clock_in_is_shown_immediately(clock: ClockStatusTracker) -> None:
  record = clock.apply_clock_in("s1")

  assert record.kind == UpdateKind.CLOCK_IN.value
  assert record.id == "clock-status-s1"
  status = clock.get_status("s1")
  assert status.is_clocked
  assert status.clocked_in_at.utcoffset() == timedelta(0)
  assert status.current_duration == 0
  assert clock.is_pending("s1")


@pytest.mark.asyncio
async def test_clock_in_confirmed_with_server_status(
    clock: ClockStatusTracker,
) -> None:
  clock.apply_clock_in("s1")
  server_status = ClockStatus(is_clocked=True, current_duration=0)

  assert clock.confirm("s1", server_status)

  assert not clock.is_pending("s1")
  assert clock.get_status("s1") == server_status


@pytest.mark.asyncio
async def test_failed_clock_out_snaps_back(clock: ClockStatusTracker) -> None:
  before = ClockStatus(is_clocked=True, current_duration=3600)
  clock.apply_clock_out("s1", before)
  assert not clock.get_status("s1").is_clocked

  assert not clock.fail("s1", ConnectionError("offline"), should_retry=False)

  assert clock.get_status("s1") == before
  assert (
      clock.tracker.get_update("clock-status-s1").state
      == UpdateState.ROLLED_BACK
  )


@pytest.mark.asyncio
async def test_retryable_clock_in_returns_to_pending(
    clock: ClockStatusTracker,
) -> None:
  clock.apply_clock_in("s1")

  assert clock.fail("s1", ConnectionError("network"))
  assert not clock.is_pending("s1")

  await asyncio.sleep(0.05)
  assert clock.is_pending("s1")


@pytest.mark.asyncio
async def test_subscribe_to_student(clock: ClockStatusTracker) -> None:
  seen = []
  unsubscribe = clock.subscribe("s1", lambda u: seen.append(u.state))

  clock.apply_clock_in("s1")
  clock.apply_clock_in("s2")
  clock.confirm("s1")
  unsubscribe()
  clock.apply_clock_out("s1")

  assert seen == [UpdateState.PENDING, UpdateState.CONFIRMED]
