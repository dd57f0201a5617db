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

"""Optimistic clock-in/clock-out status for student time tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .tracker import OptimisticUpdateTracker
from .types import UpdateKind, UpdateRecord


class ClockStatus(BaseModel):
  """Clock status of a student as shown on the dashboard."""

  is_clocked: bool = Field(description="Whether the student is clocked in")
  clocked_in_at: Optional[datetime] = Field(default=None)
  current_duration: Optional[float] = Field(
      default=None, description="Seconds since clock-in"
  )
  confirmed_at: Optional[datetime] = Field(
      default=None, description="Server confirmation time"
  )


def clock_status_key(student_id: str) -> str:
  return f"clock-status-{student_id}"


class ClockStatusTracker:
  """Clock operations on top of a shared OptimisticUpdateTracker."""

  def __init__(self, tracker: OptimisticUpdateTracker):
    self.tracker = tracker

  def apply_clock_in(self, student_id: str) -> UpdateRecord[ClockStatus]:
    status = ClockStatus(
        is_clocked=True,
        clocked_in_at=datetime.now(timezone.utc),
        current_duration=0,
    )
    return self.tracker.apply(
        clock_status_key(student_id), UpdateKind.CLOCK_IN, status
    )

  def apply_clock_out(
      self, student_id: str, original_status: Optional[ClockStatus] = None
  ) -> UpdateRecord[ClockStatus]:
    """Show the student as clocked out.

    Args:
        student_id: Student being clocked out
        original_status: Status to restore if the clock-out is rolled back
    """
    return self.tracker.apply(
        clock_status_key(student_id),
        UpdateKind.CLOCK_OUT,
        ClockStatus(is_clocked=False),
        original_status,
    )

  def confirm(
      self, student_id: str, confirmed_status: Optional[ClockStatus] = None
  ) -> bool:
    return self.tracker.confirm(clock_status_key(student_id), confirmed_status)

  def fail(
      self, student_id: str, error: BaseException, should_retry: bool = True
  ) -> bool:
    return self.tracker.fail(clock_status_key(student_id), error, should_retry)

  def get_status(self, student_id: str) -> Optional[ClockStatus]:
    return self.tracker.get_value(clock_status_key(student_id))

  def is_pending(self, student_id: str) -> bool:
    return self.tracker.is_pending(clock_status_key(student_id))

  def subscribe(
      self,
      student_id: str,
      callback: Callable[[UpdateRecord[ClockStatus]], None],
  ) -> Callable[[], None]:
    return self.tracker.subscribe(clock_status_key(student_id), callback)
