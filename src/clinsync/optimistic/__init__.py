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

from .clock_status import ClockStatus, ClockStatusTracker, clock_status_key
from .config import TrackerConfig
from .runner import OptimisticUpdateRolledBack, run_optimistic
from .tracker import OptimisticUpdateTracker
from .types import (
    RollbackReason,
    TrackerStats,
    UpdateKind,
    UpdateRecord,
    UpdateState,
    WILDCARD,
)

__all__ = [
    "ClockStatus",
    "ClockStatusTracker",
    "clock_status_key",
    "TrackerConfig",
    "OptimisticUpdateRolledBack",
    "run_optimistic",
    "OptimisticUpdateTracker",
    "RollbackReason",
    "TrackerStats",
    "UpdateKind",
    "UpdateRecord",
    "UpdateState",
    "WILDCARD",
]
