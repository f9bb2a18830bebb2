# src/calorie_api/application/jobs/descriptor.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Job descriptor: one named, independently configured unit of recurring work.

Layer:
    application/jobs
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

JobRun = Callable[[], Awaitable[int]]


@dataclass(frozen=True)
class JobDescriptor:
    """Describe a recurring job the scheduler can dispatch.

    Attributes:
        name: Stable job name used in logs, metrics and the CLI.
        interval_config_key: Configuration key holding the interval in minutes.
        default_interval_minutes: Interval used when the key is missing or
            cannot be parsed.
        run: Async callable performing one tick; returns the number of items
            processed.
        min_interval_minutes: Lower clamp applied to configured intervals.
        description: Human-readable summary for operator tooling.
    """

    name: str
    interval_config_key: str
    default_interval_minutes: int
    run: JobRun
    min_interval_minutes: int = 1
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Job name must be non-empty")
        if self.min_interval_minutes < 1:
            raise ValueError("min_interval_minutes must be >= 1")
        if self.default_interval_minutes < self.min_interval_minutes:
            raise ValueError(
                f"default_interval_minutes for {self.name!r} is below its minimum"
            )
