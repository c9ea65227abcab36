from __future__ import annotations

from typing import Final

TRAILING_WINDOW_SIZE: Final = 3


def push_trailing(window: list[float], value: float, *, size: int = TRAILING_WINDOW_SIZE) -> None:
    """Append ``value`` and evict the oldest entries so at most ``size`` remain."""
    window.append(value)
    overflow = len(window) - size
    if overflow > 0:
        del window[:overflow]


__all__ = ["TRAILING_WINDOW_SIZE", "push_trailing"]
