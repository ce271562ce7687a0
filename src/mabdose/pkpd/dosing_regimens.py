"""
Dosing schedules for repeated-dose regimens with an optional loading dose.
"""

import numpy as np
from typing import Tuple, Sequence
from dataclasses import dataclass
from enum import IntEnum

from ..exceptions import InvalidArgument


class Compartment(IntEnum):
    """State index of a dose target."""
    CENTRAL = 0
    PERIPHERAL = 1


@dataclass(frozen=True)
class DoseEvent:
    """Single dose event."""
    amount: float      # Dose amount (mg)
    time: float        # Time of dose (days)
    compartment: Compartment = Compartment.CENTRAL


class DosingSchedule:
    """Ordered, validated sequence of dose events."""

    def __init__(self, events: Sequence[DoseEvent]):
        events = tuple(events)
        for event in events:
            if not np.isfinite(event.amount) or event.amount < 0:
                raise InvalidArgument(f"Dose amount must be non-negative, got {event.amount}")
            if not np.isfinite(event.time) or event.time < 0:
                raise InvalidArgument(f"Dose time must be non-negative, got {event.time}")
        times = [e.time for e in events]
        if any(t2 <= t1 for t1, t2 in zip(times, times[1:])):
            raise InvalidArgument(f"Dose times must be strictly increasing, got {times}")
        self._events = events

    @classmethod
    def repeated(cls,
                 amount: float,
                 interval: float,
                 additional_doses: int,
                 loading_dose: float = 0.0) -> 'DosingSchedule':
        """Build a repeated-dose regimen.

        Doses of ``amount`` are given at ``0, interval, ..., additional_doses*interval``.
        A loading dose is given at time zero on top of the first repeated dose,
        so the two are merged into one event.
        """
        if interval <= 0:
            raise InvalidArgument(f"Dosing interval must be positive, got {interval}")
        if additional_doses < 0:
            raise InvalidArgument(f"Additional dose count must be non-negative, got {additional_doses}")
        if loading_dose < 0:
            raise InvalidArgument(f"Loading dose must be non-negative, got {loading_dose}")

        events = [DoseEvent(amount=amount + loading_dose, time=0.0)]
        events.extend(DoseEvent(amount=amount, time=k * interval)
                      for k in range(1, int(additional_doses) + 1))
        return cls(events)

    @property
    def events(self) -> Tuple[DoseEvent, ...]:
        return self._events

    @property
    def dose_times(self) -> np.ndarray:
        return np.array([e.time for e in self._events], dtype=float)

    @property
    def total_amount(self) -> float:
        return float(sum(e.amount for e in self._events))

    def trough_times(self, coverage_end: float) -> np.ndarray:
        """Times at which troughs are read: each later dose, then the end of coverage."""
        later_doses = [e.time for e in self._events[1:] if e.time < coverage_end]
        return np.array(later_doses + [float(coverage_end)], dtype=float)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def __repr__(self) -> str:
        body = ', '.join(f"{e.amount:g}@{e.time:g}" for e in self._events)
        return f"DosingSchedule([{body}])"
