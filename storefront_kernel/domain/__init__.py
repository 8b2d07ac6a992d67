"""
Pure domain helpers shared across storefront packages.

No ORM, database or I/O dependencies (SystemClock aside).
"""

from storefront_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
