# studyplan/availability.py
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import pandas as pd
from loguru import logger

from .errors import InvalidWindow, NoCapacity
from .models import AvailabilityWindow, TimeRange


def _merge(ranges: Iterable[TimeRange], touching: bool = True) -> List[TimeRange]:
    """Sort ranges and fuse any that overlap (and, with `touching`, any that meet)."""
    merged: List[TimeRange] = []
    for r in sorted(ranges, key=lambda r: (r.start, r.end)):
        last = merged[-1] if merged else None
        if last is not None and (r.start < last.end or (touching and r.start == last.end)):
            merged[-1] = TimeRange(last.start, max(last.end, r.end))
        else:
            merged.append(r)
    return merged


def fits(window: TimeRange, duration_minutes: int, latest: Optional[datetime] = None) -> bool:
    """True when a block starting at the window's start fits in it and ends by `latest`."""
    end = window.start + pd.Timedelta(minutes=duration_minutes)
    if end > window.end:
        return False
    return latest is None or end <= pd.Timestamp(latest)


def as_window(w) -> AvailabilityWindow:
    if isinstance(w, AvailabilityWindow):
        return w
    if isinstance(w, TimeRange):
        return AvailabilityWindow(w.start, w.end)
    if isinstance(w, dict):
        return AvailabilityWindow(w["start"], w["end"])
    try:
        start, end = w
    except (TypeError, ValueError):
        raise InvalidWindow(f"cannot read an availability window from {w!r}") from None
    return AvailabilityWindow(start, end)


class AvailabilityGrid:
    """
    The learner's free time as an ordered list of non-overlapping ranges.

    The grid works on its own copies; the caller's windows are never touched.
    Anything before `not_before` (normally the planning `now`) is cut off,
    so nothing is ever placed in the past. Overlapping caller windows are
    fused, but windows that merely meet stay separate, so a block never spans
    two of the caller's windows.
    """

    def __init__(self, windows: Iterable, not_before: Optional[datetime] = None):
        self.not_before = pd.Timestamp(not_before) if not_before is not None else None
        validated = [as_window(w) for w in windows]
        self._bounds: Tuple[TimeRange, ...] = tuple(_merge(
            (r for r in (self._clip(w.as_range()) for w in validated) if r is not None),
            touching=False,
        ))
        self._free: List[TimeRange] = list(self._bounds)

    def _clip(self, r: TimeRange) -> Optional[TimeRange]:
        if self.not_before is None or r.start >= self.not_before:
            return r
        if r.end <= self.not_before:
            return None
        return TimeRange(self.not_before, r.end)

    @property
    def windows(self) -> Tuple[TimeRange, ...]:
        """The availability this grid was built from, after clipping."""
        return self._bounds

    @property
    def free_windows(self) -> Tuple[TimeRange, ...]:
        return tuple(self._free)

    @property
    def remaining_minutes(self) -> float:
        return sum(r.minutes for r in self._free)

    def _find(self, duration_minutes: int, latest: Optional[datetime]) -> Optional[int]:
        for i, w in enumerate(self._free):
            if fits(w, duration_minutes):
                # windows are ordered, later ones end even later
                return i if fits(w, duration_minutes, latest) else None
        return None

    def window_for(self, duration_minutes: int,
                   latest: Optional[datetime] = None) -> Optional[TimeRange]:
        """The free window `allocate` would carve from, or None."""
        i = self._find(duration_minutes, latest)
        return self._free[i] if i is not None else None

    def can_fit(self, duration_minutes: int, latest: Optional[datetime] = None) -> bool:
        return self._find(duration_minutes, latest) is not None

    def allocate(self, duration_minutes: int, latest: Optional[datetime] = None,
                 buffer_minutes: int = 0) -> TimeRange:
        """
        Carve [start, start + duration) out of the earliest window that can hold it.

        Up to `buffer_minutes` after the block are consumed as well, when the
        window has room for them. Raises NoCapacity when no window fits.
        """
        i = self._find(duration_minutes, latest)
        if i is None:
            raise NoCapacity(duration_minutes)

        w = self._free[i]
        end = w.start + pd.Timedelta(minutes=duration_minutes)
        carve_end = min(w.end, end + pd.Timedelta(minutes=buffer_minutes))
        if carve_end >= w.end:
            del self._free[i]
        else:
            self._free[i] = TimeRange(carve_end, w.end)

        logger.debug("allocated {} min at {} ({} windows left)",
                     duration_minutes, w.start, len(self._free))
        return TimeRange(w.start, end)

    def reserve(self, occupied: TimeRange) -> None:
        """Remove an arbitrary occupied range from the free list."""
        kept: List[TimeRange] = []
        for w in self._free:
            if not w.overlaps(occupied):
                kept.append(w)
                continue
            if w.start < occupied.start:
                kept.append(TimeRange(w.start, occupied.start))
            if occupied.end < w.end:
                kept.append(TimeRange(occupied.end, w.end))
        self._free = kept

    def release(self, freed: TimeRange) -> None:
        """
        Give a range back to the grid, merging it with neighbouring free time.

        Only the part of the range inside the grid's availability comes back;
        time the learner never offered is dropped.
        """
        if freed.start >= freed.end:
            raise InvalidWindow(f"cannot release empty range {freed.start}..{freed.end}")
        pieces = [
            TimeRange(max(b.start, freed.start), min(b.end, freed.end))
            for b in self._bounds if b.overlaps(freed)
        ]
        if not pieces:
            return
        free: List[TimeRange] = []
        for b in self._bounds:
            inside = [r for r in self._free + pieces if b.start <= r.start and r.end <= b.end]
            free.extend(_merge(inside))
        self._free = free
        logger.debug("released {}..{} ({} windows free)", freed.start, freed.end,
                     len(self._free))

    def __len__(self) -> int:
        return len(self._free)
