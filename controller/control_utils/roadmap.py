"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import enum
import logging
import math
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from controller.control_utils.errors import MalformedRecordError

logger = logging.getLogger(__name__)


class MalformedRecordPolicy(enum.Enum):
    """What the store does with a record that does not parse into a waypoint."""
    ABORT = "abort"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: Union[str, "MalformedRecordPolicy"]) -> "MalformedRecordPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown malformed record policy '{value}'.") from None


class RoadmapStore:
    """
    Ordered waypoint storage with cached centerline samples.

    Each record of the roadmap source is one waypoint made of comma separated
    numbers, minimally ``x, y`` and optionally a heading in radians. Waypoints
    are kept in input order since that order defines the progression along the
    path; nothing is deduplicated or reordered.

    The centerline arrays ``cl_x``, ``cl_y``, ``cl_phi`` and ``cl_s`` are derived
    once from the waypoints and cached until the next ingestion. ``cl_phi`` has
    one entry per waypoint: entry ``i`` is the heading of the segment ``i -> i+1``
    and the last waypoint repeats the heading of the final segment. Zero-length
    segments carry the previous heading, explicit heading fields take precedence
    over derived ones, and the sequence is unwrapped so neighbouring headings
    never jump by 2*pi.

    Parameters
    ----------
    malformed_policy : str or MalformedRecordPolicy
        ``"abort"`` raises :class:`MalformedRecordError` at the first bad record,
        ``"skip"`` logs and drops it, then continues with the next line.
    """

    def __init__(self, malformed_policy: Union[str, MalformedRecordPolicy] = MalformedRecordPolicy.ABORT):
        self.malformed_policy = MalformedRecordPolicy.parse(malformed_policy)
        self.waypoints: List[List[float]] = []
        self.rejected: List[Tuple[int, str]] = []
        self._centerline = None

    @classmethod
    def from_csv(cls, path: Union[str, Path], malformed_policy=MalformedRecordPolicy.ABORT) -> "RoadmapStore":
        store = cls(malformed_policy=malformed_policy)
        store.load(path)
        return store

    def __len__(self):
        return len(self.waypoints)

    def load(self, path: Union[str, Path]) -> int:
        """Read a roadmap file and ingest its records."""
        text = Path(path).read_text()
        count = self.ingest(text)
        logger.info(f"Loaded {count} waypoints from {path}")
        return count

    def ingest(self, text: str) -> int:
        """
        Parse newline-delimited records and append the resulting waypoints.

        Returns the number of waypoints appended by this call. Under the abort
        policy the waypoints parsed before the bad record stay in the store.
        """
        appended = 0
        for line_number, line in enumerate(text.splitlines(), start=1):
            record = line.strip()
            if not record:
                continue
            try:
                waypoint = self.parse_record(record, line_number)
            except MalformedRecordError as err:
                if self.malformed_policy is MalformedRecordPolicy.ABORT:
                    self._invalidate(appended)
                    raise
                logger.warning(f"Skipping roadmap record: {err}")
                self.rejected.append((line_number, record))
                continue
            self.waypoints.append(waypoint)
            appended += 1
        self._invalidate(appended)
        return appended

    @staticmethod
    def parse_record(record: str, line_number: int = 0) -> List[float]:
        fields = [field.strip() for field in record.split(",")]
        if len(fields) < 2:
            raise MalformedRecordError(line_number, record, "expected at least x and y")
        waypoint = []
        for field in fields:
            try:
                value = float(field)
            except ValueError:
                raise MalformedRecordError(line_number, record, f"field {field!r} is not numeric") from None
            if not math.isfinite(value):
                raise MalformedRecordError(line_number, record, f"field {field!r} is not finite")
            waypoint.append(value)
        return waypoint

    def _invalidate(self, appended: int):
        if appended:
            self._centerline = None

    # centerline products

    @property
    def cl_x(self) -> np.ndarray:
        return self._derived()[0]

    @property
    def cl_y(self) -> np.ndarray:
        return self._derived()[1]

    @property
    def cl_phi(self) -> np.ndarray:
        return self._derived()[2]

    @property
    def cl_s(self) -> np.ndarray:
        return self._derived()[3]

    def _derived(self):
        if self._centerline is None:
            self._centerline = self._compute_centerline()
        return self._centerline

    def _compute_centerline(self):
        n = len(self.waypoints)
        cl_x = np.array([wp[0] for wp in self.waypoints], dtype=float)
        cl_y = np.array([wp[1] for wp in self.waypoints], dtype=float)
        if n == 0:
            empty = np.zeros(0)
            return cl_x, cl_y, empty, empty.copy()

        dx, dy = np.diff(cl_x), np.diff(cl_y)
        seg_len = np.hypot(dx, dy)
        cl_s = np.concatenate(([0.0], np.cumsum(seg_len)))

        cl_phi = np.zeros(n)
        prev = 0.0
        for i in range(n - 1):
            if seg_len[i] > 0.0:
                prev = math.atan2(dy[i], dx[i])
            cl_phi[i] = prev
        cl_phi[-1] = cl_phi[-2] if n > 1 else 0.0

        for i, wp in enumerate(self.waypoints):
            if len(wp) > 2:
                cl_phi[i] = wp[2]

        # fix angle jump
        wrapped_diffs = (np.diff(cl_phi) + np.pi) % (2 * np.pi) - np.pi
        cl_phi = np.cumsum(np.concatenate(([cl_phi[0]], wrapped_diffs)))
        return cl_x, cl_y, cl_phi, cl_s

    def nearest_index(self, x: float, y: float) -> Optional[int]:
        """Index of the centerline sample closest to (x, y), None for an empty roadmap."""
        if not self.waypoints:
            return None
        return int(np.argmin(np.hypot(self.cl_x - x, self.cl_y - y)))
