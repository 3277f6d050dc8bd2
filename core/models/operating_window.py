"""Scheduled operating window and the airport services it triggers."""

from datetime import date, datetime, time, timedelta

from pydantic import BaseModel

STANDARD_OPEN = time(6, 0)
STANDARD_CLOSE = time(22, 0)
LIGHTING_START = time(23, 0)
LIGHTING_END = time(2, 0)


def _outside_standard_hours(t: time) -> bool:
    return t < STANDARD_OPEN or t > STANDARD_CLOSE


def _in_lighting_period(t: time) -> bool:
    # Period wraps midnight
    return t >= LIGHTING_START or t <= LIGHTING_END


class OperatingWindow(BaseModel):
    """
    Scheduled arrival and departure times of day.

    Extended operations are needed when either time falls outside
    06:00-22:00. Lighting is needed when either time falls inside
    23:00-02:00, one hour per qualifying endpoint. A departure identical to
    the arrival is not counted twice.

    Equality compares the two times only.
    """

    arrival: time
    departure: time

    model_config = {"frozen": True}

    @classmethod
    def arrival_only(cls, arrival: time) -> "OperatingWindow":
        """Window for an arrival with an assumed one-hour turnaround."""
        departure = (datetime.combine(date(2000, 1, 1), arrival) + timedelta(hours=1)).time()
        return cls(arrival=arrival, departure=departure)

    @classmethod
    def standard_hours(cls) -> "OperatingWindow":
        return cls(arrival=time(10, 0), departure=time(12, 0))

    @property
    def requires_extended_operations(self) -> bool:
        return _outside_standard_hours(self.arrival) or _outside_standard_hours(self.departure)

    @property
    def requires_lighting(self) -> bool:
        return self.lighting_hours > 0

    @property
    def lighting_hours(self) -> int:
        hours = 0
        if _in_lighting_period(self.arrival):
            hours += 1
        if self.departure != self.arrival and _in_lighting_period(self.departure):
            hours += 1
        return hours

    @property
    def is_early_operation(self) -> bool:
        return self.arrival < STANDARD_OPEN

    @property
    def is_late_operation(self) -> bool:
        return self.departure > STANDARD_CLOSE

    def __str__(self) -> str:
        flags = []
        if self.requires_extended_operations:
            flags.append("Extended")
        if self.requires_lighting:
            flags.append("Lighting")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        return f"{self.arrival:%H:%M}-{self.departure:%H:%M}{suffix}"
