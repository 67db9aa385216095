"""Output size limiting for operator results.

A single oversized operator output must not sink a whole pipe run, so results
larger than the ceiling are reduced: sequences keep their longest prefix that
fits, anything else is replaced by a marker object describing what was dropped.
Sizes are the UTF-8 byte length of the compact JSON encoding.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


MAX_OUTPUT_SIZE = 1 * 1024 * 1024
# Smallest ceiling every marker object still fits under.
MIN_OUTPUT_SIZE = 128


@dataclass(slots=True)
class OutputLimitResult:
    output: object
    truncated: bool
    original_size: int
    final_size: int
    original_count: int | None = None
    final_count: int | None = None


def serialize_output(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def measure_output_size(value: object) -> int:
    """Serialized size in bytes, or -1 when the value cannot be serialized."""
    try:
        return len(serialize_output(value).encode("utf-8"))
    except (TypeError, ValueError):
        return -1


def exceeds_output_limit(value: object, max_size: int = MAX_OUTPUT_SIZE) -> bool:
    size = measure_output_size(value)
    return size < 0 or size > max_size


def enforce_output_limit(output: object, max_size: int = MAX_OUTPUT_SIZE) -> OutputLimitResult:
    """Bound ``output`` to ``max_size`` serialized bytes.

    Raises ``ValueError`` when the output cannot be serialized at all (for example
    a self-referencing structure) or when ``max_size`` is below ``MIN_OUTPUT_SIZE``.
    """
    check_output_ceiling(max_size)
    original_size = _size(output)
    if original_size <= max_size:
        return OutputLimitResult(
            output=output,
            truncated=False,
            original_size=original_size,
            final_size=original_size,
        )

    if isinstance(output, (list, tuple)):
        return _truncate_sequence(list(output), max_size, original_size)

    marker = {
        "truncated": True,
        "error": f"Output truncated: data exceeded the {_describe(max_size)} limit",
        "originalSize": original_size,
        "maxSize": max_size,
    }
    marker = _fit_marker(marker, max_size)
    return OutputLimitResult(
        output=marker,
        truncated=True,
        original_size=original_size,
        final_size=_size(marker),
    )


def _truncate_sequence(items: list[object], max_size: int, original_size: int) -> OutputLimitResult:
    original_count = len(items)

    # The wrapped payload grows monotonically with the prefix length.
    low, high = 0, original_count
    best = 0
    while low <= high:
        mid = (low + high) // 2
        if _size(_wrap(items, mid, original_count, max_size)) <= max_size:
            best = mid
            low = mid + 1
        else:
            high = mid - 1

    if best == 0:
        empty = {
            "truncated": True,
            "error": f"Output truncated: individual items exceed the {_describe(max_size)} limit",
            "originalCount": original_count,
            "originalSize": original_size,
            "returnedCount": 0,
            "data": [],
        }
        empty = _fit_marker(empty, max_size)
        return OutputLimitResult(
            output=empty,
            truncated=True,
            original_size=original_size,
            final_size=_size(empty),
            original_count=original_count,
            final_count=0,
        )

    if best < original_count:
        wrapped = _wrap(items, best, original_count, max_size)
        return OutputLimitResult(
            output=wrapped,
            truncated=True,
            original_size=original_size,
            final_size=_size(wrapped),
            original_count=original_count,
            final_count=best,
        )

    return OutputLimitResult(
        output=items,
        truncated=False,
        original_size=original_size,
        final_size=_size(items),
        original_count=original_count,
        final_count=best,
    )


def _wrap(items: list[object], count: int, original_count: int, max_size: int) -> dict[str, object]:
    return {
        "truncated": True,
        "originalCount": original_count,
        "returnedCount": count,
        "warning": (
            f"Output truncated: data exceeded the {_describe(max_size)} limit. "
            f"Showing {count} of {original_count} items."
        ),
        "data": items[:count],
    }


def check_output_ceiling(max_size: int) -> int:
    if max_size < MIN_OUTPUT_SIZE:
        raise ValueError(f"Output ceiling must be at least {MIN_OUTPUT_SIZE} bytes (got {max_size}).")
    return max_size


def _fit_marker(marker: dict[str, object], max_size: int) -> dict[str, object]:
    if _size(marker) <= max_size:
        return marker
    return {key: value for key, value in marker.items() if key != "error"}


def _size(value: object) -> int:
    return len(serialize_output(value).encode("utf-8"))


def _describe(max_size: int) -> str:
    if max_size % (1024 * 1024) == 0:
        return f"{max_size // (1024 * 1024)}MB"
    if max_size % 1024 == 0:
        return f"{max_size // 1024}KB"
    return f"{max_size}B"
