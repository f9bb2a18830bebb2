# src/calorie_api/__init__.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Calorie API: idempotent write protection and background job scheduling."""

__version__ = "0.1.0"
