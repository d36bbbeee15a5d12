"""Domain primitives shared by kernel services and engines."""

from produce_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "SystemClock", "DeterministicClock"]
