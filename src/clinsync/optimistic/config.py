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

import os
from typing import Any, Dict

from pydantic import BaseModel, Field

ENV_PREFIX = "CLINSYNC_OPTIMISTIC_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class TrackerConfig(BaseModel):
  """Settings for an OptimisticUpdateTracker."""

  max_retries: int = Field(
      default=3, ge=0, description="Retries allowed before forced rollback"
  )
  retry_delay_seconds: float = Field(
      default=1.0,
      ge=0,
      description="Base retry delay, multiplied by the attempt number",
  )
  auto_rollback_delay_seconds: float = Field(
      default=5.0,
      ge=0,
      description="Delay after apply before a still-pending update is rolled back",
  )
  auto_rollback_enabled: bool = Field(default=True)
  persist_failed_updates: bool = Field(
      default=False,
      description="Keep rolled back updates until clear() instead of evicting",
  )
  eviction_delay_seconds: float = Field(
      default=1.0,
      ge=0,
      description="Grace delay before confirmed or rolled back updates are evicted",
  )

  @classmethod
  def from_env(cls, prefix: str = ENV_PREFIX) -> TrackerConfig:
    """Build a config from environment variables.

    Unset variables keep their defaults, e.g. ``CLINSYNC_OPTIMISTIC_MAX_RETRIES``
    overrides ``max_retries``.
    """
    values: Dict[str, Any] = {}
    for name, field in cls.model_fields.items():
      raw = os.getenv(f"{prefix}{name.upper()}")
      if raw is None:
        continue
      if field.annotation is bool:
        values[name] = raw.strip().lower() in _TRUE_VALUES
      else:
        values[name] = raw.strip()
    return cls(**values)
