"""Funnel tracker: per (job kind, milestone) buckets with conversion queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Sequence

from .types import AnalyzedJob, JobKind, Milestone, Timestamp

Mask = Sequence[Sequence[bool]]


class TrackerContractError(RuntimeError):
    """Raised when a tracker is created or queried against its contract."""


@dataclass(slots=True)
class Bucket:
    achieved: list[AnalyzedJob] = field(default_factory=list)
    cum_achieve_time: timedelta = timedelta(0)
    # jobs lost while trying to reach this milestone from the previous applicable one
    lost: list[AnalyzedJob] = field(default_factory=list)
    cum_loss_time: timedelta = timedelta(0)


@dataclass(slots=True)
class CalcStatsResult:
    achieved: list[AnalyzedJob]
    num_total: int
    conversion_rate: Optional[float]
    average_time_to_achieve: timedelta


@dataclass(slots=True)
class LossStatsResult:
    lost: list[AnalyzedJob]
    num_total: int
    average_time_to_lose: timedelta


class JobTracker:
    """Accumulates analyzed jobs into a fixed grid of buckets.

    Rows are job kinds and columns are milestones. A cell disabled in the mask
    holds ``None`` and marks a milestone that does not apply to that kind.
    """

    def __init__(self, mask: Mask) -> None:
        if not mask or not mask[0]:
            raise TrackerContractError("Tracker mask must have at least one row and one column")
        width = len(mask[0])
        if any(len(row) != width for row in mask):
            raise TrackerContractError("Tracker mask rows must all have the same length")
        self._mask = tuple(tuple(bool(enabled) for enabled in row) for row in mask)
        self._buckets: list[list[Optional[Bucket]]] = [
            [Bucket() if enabled else None for enabled in row] for row in self._mask
        ]

    @property
    def mask(self) -> tuple[tuple[bool, ...], ...]:
        return self._mask

    @property
    def num_kinds(self) -> int:
        return len(self._mask)

    @property
    def num_milestones(self) -> int:
        return len(self._mask[0])

    def _row(self, kind: int) -> list[Optional[Bucket]]:
        if not 0 <= int(kind) < self.num_kinds:
            raise TrackerContractError(f"Unknown job kind index {int(kind)}")
        return self._buckets[int(kind)]

    def get_bucket(self, kind: JobKind | int, milestone: Milestone | int) -> Optional[Bucket]:
        row = self._row(kind)
        if not 0 <= int(milestone) < self.num_milestones:
            raise TrackerContractError(f"Unknown milestone index {int(milestone)}")
        return row[int(milestone)]

    def add_job(
        self,
        job: AnalyzedJob,
        kind: JobKind | int,
        timestamps: Sequence[Optional[Timestamp]],
        loss_timestamp: Optional[Timestamp] = None,
    ) -> None:
        row = self._row(kind)
        if not 0 < len(timestamps) <= self.num_milestones:
            raise TrackerContractError(
                f"Expected between 1 and {self.num_milestones} timestamps, got {len(timestamps)}"
            )
        for index, timestamp in enumerate(timestamps):
            if row[index] is None and timestamp is not None:
                raise TrackerContractError(
                    f"Timestamp at milestone {index} must be None for job kind {int(kind)}"
                )

        last_concrete: Optional[Timestamp] = None
        for index, timestamp in enumerate(timestamps):
            bucket = row[index]
            if bucket is None:
                continue
            bucket.achieved.append(job)
            if timestamp is None:
                continue
            if last_concrete is not None:
                bucket.cum_achieve_time += timestamp - last_concrete
            last_concrete = timestamp

        if loss_timestamp is None:
            return
        next_bucket = next(
            (bucket for bucket in row[len(timestamps):] if bucket is not None),
            None,
        )
        if next_bucket is None:
            return
        next_bucket.lost.append(job)
        if last_concrete is not None:
            next_bucket.cum_loss_time += loss_timestamp - last_concrete

    def _previous_bucket(self, kind: int, milestone: int) -> Optional[Bucket]:
        row = self._buckets[kind]
        for index in range(milestone - 1, -1, -1):
            if row[index] is not None:
                return row[index]
        return None

    def calc_stats(
        self, milestone: Milestone | int, kinds: Sequence[JobKind | int]
    ) -> CalcStatsResult:
        achieved: list[AnalyzedJob] = []
        cum_time = timedelta(0)
        potential = 0
        for kind in kinds:
            bucket = self.get_bucket(kind, milestone)
            if bucket is None:
                raise TrackerContractError(
                    f"Job kind {int(kind)} has no bucket at milestone {int(milestone)}"
                )
            achieved.extend(bucket.achieved)
            cum_time += bucket.cum_achieve_time
            previous = self._previous_bucket(int(kind), int(milestone))
            potential += len((previous or bucket).achieved)

        num_total = len(achieved)
        return CalcStatsResult(
            achieved=achieved,
            num_total=num_total,
            conversion_rate=num_total / potential if potential > 0 else None,
            average_time_to_achieve=cum_time / num_total if num_total else timedelta(0),
        )

    def calc_stats_of_loss(self) -> LossStatsResult:
        lost: list[AnalyzedJob] = []
        num_total = 0
        cum_time = timedelta(0)
        for row in self._buckets:
            # the first column is never a loss origin; a lost lead is not counted
            applicable = [b for b in row[1:] if b is not None]
            for earlier, later in zip(applicable, applicable[1:]):
                num_total += len(earlier.achieved) - len(later.achieved)
                cum_time += later.cum_loss_time
                lost.extend(later.lost)
        return LossStatsResult(
            lost=lost,
            num_total=num_total,
            average_time_to_lose=cum_time / num_total if num_total > 0 else timedelta(0),
        )

    def merge(self, other: JobTracker) -> None:
        if other.mask != self.mask:
            raise TrackerContractError("Cannot merge trackers built from different masks")
        for row, other_row in zip(self._buckets, other._buckets):
            for bucket, other_bucket in zip(row, other_row):
                if bucket is None or other_bucket is None:
                    continue
                bucket.achieved.extend(other_bucket.achieved)
                bucket.cum_achieve_time += other_bucket.cum_achieve_time
                bucket.lost.extend(other_bucket.lost)
                bucket.cum_loss_time += other_bucket.cum_loss_time

    def __str__(self) -> str:
        lines = []
        for row in self._buckets:
            cells = []
            for bucket in row:
                if bucket is None:
                    cells.append("(--- --- ------)")
                else:
                    cells.append(
                        f"({len(bucket.achieved):3} {len(bucket.lost):3} "
                        f"{bucket.cum_achieve_time.total_seconds() / 86400:6.1f})"
                    )
            lines.append("".join(cells))
        return "\n".join(lines)
