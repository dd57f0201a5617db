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

from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

WILDCARD = "*"


class UpdateState(str, Enum):
  """Lifecycle states of an optimistic update."""

  PENDING = "pending"
  CONFIRMED = "confirmed"
  FAILED = "failed"
  ROLLED_BACK = "rolled_back"


class RollbackReason(str, Enum):
  """Why an update was rolled back."""

  TIMEOUT = "timeout"
  MAX_RETRIES_EXCEEDED = "max-retries-exceeded"
  MANUAL = "manual"


class UpdateKind(str, Enum):
  """Well-known mutation kinds. Any other string tag is accepted too."""

  CLOCK_IN = "clock-in"
  CLOCK_OUT = "clock-out"
  STATUS_UPDATE = "status-update"


TERMINAL_STATES = frozenset({UpdateState.CONFIRMED, UpdateState.ROLLED_BACK})


class UpdateRecord(BaseModel, Generic[T]):
  """One in-flight optimistic mutation."""

  id: str = Field(description="Key of the subject being mutated")
  kind: str = Field(description="Mutation category, e.g. clock-in")
  optimistic_value: T = Field(
      description="Speculative value shown before the outcome is known"
  )
  original_value: Optional[T] = Field(
      default=None, description="Last confirmed value, restored on rollback"
  )
  created_at: datetime = Field(
      default_factory=lambda: datetime.now(timezone.utc),
      description="When the update was applied (UTC)",
  )
  state: UpdateState = Field(default=UpdateState.PENDING)
  retry_count: int = Field(default=0, ge=0, description="Failed attempts so far")
  max_retries: int = Field(default=3, ge=0)
  last_error: Optional[str] = Field(
      default=None, description="Message of the most recent reported failure"
  )
  rollback_reason: Optional[str] = Field(
      default=None, description="A RollbackReason value or a caller-defined reason"
  )

  @property
  def is_terminal(self) -> bool:
    return self.state in TERMINAL_STATES


class TrackerStats(BaseModel):
  """Counts of live records per state."""

  total: int = 0
  pending: int = 0
  confirmed: int = 0
  failed: int = 0
  rolled_back: int = 0
