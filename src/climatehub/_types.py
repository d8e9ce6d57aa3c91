"""Internal shared type aliases for cross-module contracts.

Not re-exported from ``climatehub.__init__``.
"""

from __future__ import annotations

from typing import Any, Literal

import numpy as np
import numpy.typing as npt

TimeRange = tuple[str, str]
"""ISO-8601 date pair ``(start, end)`` bounding a query window."""

Metric = Literal["mean", "median"]
"""Central-tendency reducer for monthly climatologies."""

AggregationMethod = Literal["sum", "mean"]
"""Temporal reducer for annual series."""

ReduceMethod = Literal["mean", "median", "sum"]
"""Any pixel-wise temporal reducer supported by a time series."""

CalendarField = Literal["month", "year"]
"""Calendar field a time series can be grouped by."""

FloatArray = npt.NDArray[np.floating[Any]]
