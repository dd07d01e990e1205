"""Selectors for the production kernel (read side)."""

from production_kernel.selectors.usage_selector import (
    OutputUsage,
    OutputUsageSelector,
    UsageReport,
)

__all__ = [
    "OutputUsage",
    "OutputUsageSelector",
    "UsageReport",
]
