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
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar, Union

from .config import TrackerConfig
from .types import (
    RollbackReason,
    TrackerStats,
    UpdateRecord,
    UpdateState,
    WILDCARD,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UpdateCallback = Callable[[UpdateRecord], Any]


def _key(value: Union[str, Enum]) -> str:
  """Subscription and kind keys are plain strings."""
  if isinstance(value, Enum):
    return str(value.value)
  return value


class OptimisticUpdateTracker:
  """Tracks speculative values shown while their real operation is in flight.

  Callers apply an update before starting an asynchronous operation, then
  report its outcome with confirm() or fail(). The tracker owns the state
  transitions and three kinds of one-shot timers:

  - an auto-rollback watchdog per apply(), acting only while still pending
  - a retry promotion per retryable fail(), moving failed back to pending
  - an eviction per terminal transition, removing the record after a grace delay

  Every timer re-checks that the record it was scheduled for is still the live
  record, and still in the expected state, before acting. A confirm that
  arrives before the watchdog therefore always wins.

  All methods must be called from the event loop the tracker schedules on:
  the loop passed to the constructor, or the running loop.
  """

  def __init__(
      self,
      config: Optional[TrackerConfig] = None,
      loop: Optional[asyncio.AbstractEventLoop] = None,
  ):
    """Initialize the tracker.

    Args:
        config: Retry, rollback and eviction settings
        loop: Event loop for timers; defaults to the running loop
    """
    self.config = config or TrackerConfig()
    self._loop = loop
    self._updates: Dict[str, UpdateRecord] = {}
    self._subscribers: Dict[str, List[UpdateCallback]] = {}
    self._timers: Dict[str, List[asyncio.TimerHandle]] = defaultdict(list)
    self._callback_tasks: Set[asyncio.Task] = set()

  def apply(
      self,
      update_id: str,
      kind: Union[str, Enum],
      optimistic_value: T,
      original_value: Optional[T] = None,
  ) -> UpdateRecord[T]:
    """Apply an optimistic update immediately.

    A previous update for the same id is replaced and its timers cancelled.

    Args:
        update_id: Key of the subject being mutated
        kind: Mutation category, used as a subscription key
        optimistic_value: Value to show until the outcome is known
        original_value: Value to restore if the update is rolled back

    Returns:
        Snapshot of the created record
    """
    if not update_id:
      raise ValueError("update_id must be a non-empty string")

    self._cancel_timers(update_id)
    record: UpdateRecord[T] = UpdateRecord(
        id=update_id,
        kind=_key(kind),
        optimistic_value=optimistic_value,
        original_value=original_value,
        max_retries=self.config.max_retries,
    )
    self._updates[update_id] = record
    logger.debug(f"Applied optimistic {record.kind} update: {update_id}")
    self._notify(record)

    if self.config.auto_rollback_enabled:
      self._schedule(
          update_id,
          self.config.auto_rollback_delay_seconds,
          self._auto_rollback,
          record,
      )

    return record.model_copy(deep=True)

  def confirm(self, update_id: str, confirmed_value: Any = None) -> bool:
    """Confirm an update once its operation succeeded.

    Args:
        update_id: Key of the update
        confirmed_value: Authoritative value replacing the optimistic one

    Returns:
        False if no update exists for the id
    """
    record = self._updates.get(update_id)
    if record is None:
      return False

    record.state = UpdateState.CONFIRMED
    if confirmed_value is not None:
      record.optimistic_value = confirmed_value
    logger.debug(f"Confirmed optimistic update: {update_id}")
    self._notify(record)

    self._schedule(
        update_id, self.config.eviction_delay_seconds, self._evict, record
    )
    return True

  def fail(
      self, update_id: str, error: BaseException, should_retry: bool = True
  ) -> bool:
    """Report a failed attempt, scheduling a retry when allowed.

    Attempt n is promoted back to pending after n * retry_delay_seconds.

    Args:
        update_id: Key of the update
        error: Failure reported by the caller's operation
        should_retry: Whether the operation may be attempted again

    Returns:
        True if a retry was scheduled, False if the update is unknown, already
        rolled back, or was rolled back because retries are exhausted or not
        requested
    """
    record = self._updates.get(update_id)
    if record is None or record.state == UpdateState.ROLLED_BACK:
      return False

    record.last_error = str(error)
    attempt = record.retry_count + 1

    if should_retry and attempt <= record.max_retries:
      record.state = UpdateState.FAILED
      record.retry_count = attempt
      logger.debug(
          f"Optimistic update {update_id} failed, retry {attempt}/"
          f"{record.max_retries}: {error}"
      )
      self._notify(record)
      self._schedule(
          update_id,
          self.config.retry_delay_seconds * attempt,
          self._promote_retry,
          record,
      )
      return True

    record.retry_count = min(attempt, record.max_retries)
    self.rollback(update_id, RollbackReason.MAX_RETRIES_EXCEEDED)
    return False

  def rollback(
      self,
      update_id: str,
      reason: Union[str, RollbackReason] = RollbackReason.MANUAL,
  ) -> bool:
    """Roll an update back so readers see its original value.

    Returns:
        False if no update exists for the id
    """
    record = self._updates.get(update_id)
    if record is None:
      return False

    record.rollback_reason = _key(reason)
    record.state = UpdateState.ROLLED_BACK
    logger.debug(
        f"Rolled back optimistic update {update_id}: {record.rollback_reason}"
    )
    self._notify(record)

    if not self.config.persist_failed_updates:
      self._schedule(
          update_id, self.config.eviction_delay_seconds, self._evict, record
      )
    return True

  def get_value(self, update_id: str) -> Any:
    """Value to display for an update.

    The optimistic (or confirmed) value, or the original value once the
    update was rolled back. None when nothing is tracked for the id.
    """
    record = self._updates.get(update_id)
    if record is None:
      return None
    if record.state == UpdateState.ROLLED_BACK:
      return record.original_value
    return record.optimistic_value

  def is_pending(self, update_id: str) -> bool:
    record = self._updates.get(update_id)
    return record is not None and record.state == UpdateState.PENDING

  def get_update(self, update_id: str) -> Optional[UpdateRecord]:
    record = self._updates.get(update_id)
    return record.model_copy(deep=True) if record is not None else None

  def get_pending_updates(self) -> List[UpdateRecord]:
    return [
        record.model_copy(deep=True)
        for record in self._updates.values()
        if record.state == UpdateState.PENDING
    ]

  def get_stats(self) -> TrackerStats:
    records = list(self._updates.values())

    def count(state: UpdateState) -> int:
      return sum(1 for r in records if r.state == state)

    return TrackerStats(
        total=len(records),
        pending=count(UpdateState.PENDING),
        confirmed=count(UpdateState.CONFIRMED),
        failed=count(UpdateState.FAILED),
        rolled_back=count(UpdateState.ROLLED_BACK),
    )

  def subscribe(
      self, key: Union[str, Enum], callback: UpdateCallback
  ) -> Callable[[], None]:
    """Subscribe to transitions of an update id, a kind, or WILDCARD.

    The callback receives a snapshot of the record after each transition.
    Coroutine functions are scheduled as tasks on the tracker's loop.

    Returns:
        Function removing this subscription
    """
    key = _key(key)
    callbacks = self._subscribers.setdefault(key, [])
    if callback not in callbacks:
      callbacks.append(callback)

    def unsubscribe() -> None:
      subscribers = self._subscribers.get(key)
      if subscribers is None:
        return
      if callback in subscribers:
        subscribers.remove(callback)
      if not subscribers:
        del self._subscribers[key]

    return unsubscribe

  def clear(self):
    """Drop every update, timer and subscription (e.g. on sign-out)."""
    for update_id in list(self._timers):
      self._cancel_timers(update_id)
    self._updates.clear()
    self._subscribers.clear()

  def _get_loop(self) -> asyncio.AbstractEventLoop:
    return self._loop or asyncio.get_running_loop()

  def _schedule(
      self,
      update_id: str,
      delay: float,
      callback: Callable[[UpdateRecord], None],
      record: UpdateRecord,
  ):
    handle = self._get_loop().call_later(delay, callback, record)
    self._timers[update_id].append(handle)

  def _cancel_timers(self, update_id: str):
    for handle in self._timers.pop(update_id, []):
      handle.cancel()

  def _is_live(self, record: UpdateRecord) -> bool:
    return self._updates.get(record.id) is record

  def _auto_rollback(self, record: UpdateRecord):
    if self._is_live(record) and record.state == UpdateState.PENDING:
      self.rollback(record.id, RollbackReason.TIMEOUT)

  def _promote_retry(self, record: UpdateRecord):
    if self._is_live(record) and record.state == UpdateState.FAILED:
      record.state = UpdateState.PENDING
      logger.debug(f"Optimistic update {record.id} ready for retry")
      self._notify(record)

  def _evict(self, record: UpdateRecord):
    if not self._is_live(record):
      return
    if record.state == UpdateState.CONFIRMED or (
        record.state == UpdateState.ROLLED_BACK
        and not self.config.persist_failed_updates
    ):
      del self._updates[record.id]
      self._cancel_timers(record.id)
      logger.debug(f"Evicted optimistic update: {record.id}")

  def _notify(self, record: UpdateRecord):
    """Notify subscribers of the record's id, its kind and the wildcard."""
    snapshot = record.model_copy(deep=True)
    for key in (record.id, record.kind, WILDCARD):
      for callback in list(self._subscribers.get(key, ())):
        self._run_callback(callback, snapshot)

  def _run_callback(self, callback: UpdateCallback, snapshot: UpdateRecord):
    try:
      if inspect.iscoroutinefunction(callback):
        task = self._get_loop().create_task(callback(snapshot))
        self._callback_tasks.add(task)
        task.add_done_callback(self._on_callback_task_done)
      else:
        callback(snapshot)
    except Exception as e:
      logger.error(f"Error in subscriber for update {snapshot.id}: {e}")

  def _on_callback_task_done(self, task: asyncio.Task):
    self._callback_tasks.discard(task)
    if task.cancelled():
      return
    error = task.exception()
    if error is not None:
      logger.error(f"Error in async subscriber: {error}")
