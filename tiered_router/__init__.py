"""Tiered task router: picks the execution tier and model for generation tasks."""

from __future__ import annotations

__version__ = "0.1.0"
