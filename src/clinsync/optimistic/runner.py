# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar, Union

from .tracker import OptimisticUpdateTracker
from .types import UpdateRecord, UpdateState

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra time allowed for a retry promotion timer to fire.
_PROMOTION_SLACK_SECONDS = 1.0


class OptimisticUpdateRolledBack(Exception):
  """The operation behind an optimistic update failed for good."""

  def __init__(self, update_id: str, record: Optional[UpdateRecord] = None):
    super().__init__(f"Optimistic update {update_id} was rolled back")
    self.update_id = update_id
    self.record = record


async def run_optimistic(
    tracker: OptimisticUpdateTracker,
    update_id: str,
    kind: Union[str, Enum],
    optimistic_value: T,
    operation: Callable[[], Awaitable[Optional[T]]],
    original_value: Optional[T] = None,
) -> Optional[T]:
  """Run an operation behind an optimistic update.

  The update is applied first, then the operation is awaited. Success confirms
  the update with the operation's result. Each failure is reported to the
  tracker; the operation is attempted again once the tracker promotes the
  update back to pending.

  Args:
      tracker: Tracker holding the update
      update_id: Key of the subject being mutated
      kind: Mutation category
      optimistic_value: Value to show while the operation runs
      operation: Async callable performing the real mutation
      original_value: Value to restore on rollback

  Returns:
      The operation's result

  Raises:
      OptimisticUpdateRolledBack: retries exhausted or the update was rolled
        back while waiting, chained to the last operation error
  """
  tracker.apply(update_id, kind, optimistic_value, original_value)

  while True:
    try:
      result = await operation()
    except Exception as e:
      if not tracker.fail(update_id, e):
        raise OptimisticUpdateRolledBack(
            update_id, tracker.get_update(update_id)
        ) from e
      state = await _wait_for_retry(tracker, update_id)
      if state != UpdateState.PENDING:
        raise OptimisticUpdateRolledBack(
            update_id, tracker.get_update(update_id)
        ) from e
      logger.info(f"Retrying operation for optimistic update {update_id}")
      continue

    tracker.confirm(update_id, result)
    return result


async def _wait_for_retry(
    tracker: OptimisticUpdateTracker, update_id: str
) -> Optional[UpdateState]:
  """Wait until the update leaves the failed state."""
  record = tracker.get_update(update_id)
  if record is None or record.state != UpdateState.FAILED:
    return record.state if record is not None else None

  future: asyncio.Future = asyncio.get_running_loop().create_future()

  def on_update(update: UpdateRecord):
    if update.state != UpdateState.FAILED and not future.done():
      future.set_result(update.state)

  unsubscribe = tracker.subscribe(update_id, on_update)
  timeout = (
      tracker.config.retry_delay_seconds * record.retry_count
      + _PROMOTION_SLACK_SECONDS
  )
  try:
    return await asyncio.wait_for(future, timeout=timeout)
  except asyncio.TimeoutError:
    current = tracker.get_update(update_id)
    return current.state if current is not None else None
  finally:
    unsubscribe()
