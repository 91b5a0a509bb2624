"""
simulation_core.py - Rainfall accumulation engine for one-dimensional landscapes.

Features:
- Segment graph built from terrain heights, bounded by two infinitely high walls
- Same-level pre-merge of adjacent positions that already share a level
- Two-pass relaxation (downhill, then uphill) that moves pending water across
  segment boundaries and settles it into pits
- Greedy merging of segments whose water levels become equal
- Mass-balance tracking and per-step excess history for diagnostics

Units:
- Heights: arbitrary length unit (one position is one unit wide)
- Hours: rainfall duration; one hour deposits one unit of water per position
"""

import math
import warnings
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import structlog

logger = structlog.get_logger()

LEFT = -1
RIGHT = 1


@dataclass
class SimulationParams:
    """
    Parameters controlling the rainfall simulation.

    Attributes:
        hours: Duration of uniform rainfall. Every position receives `hours`
               units of water before relaxation starts.
        premerge: Fuse adjacent equal-level positions before relaxation.
                  Relaxation merges ties on its own, so this only saves steps.
        record_history: Keep the excess total after every relaxation step
        balance_tolerance: Relative mass balance error above which a warning
                           is emitted after the run
    """
    hours: float = 1.0                  # rainfall duration (hours)
    premerge: bool = True               # pre-merge equal-level neighbours
    record_history: bool = True         # keep excess total per step
    balance_tolerance: float = 1e-6     # relative error before warning


@dataclass(frozen=True)
class Segment:
    """
    A run of adjacent landscape positions sharing one water level.

    Segments are values: every transformation builds a replacement with
    `dataclasses.replace` instead of changing an existing segment.
    """
    members: range              # contiguous original position indices
    settled: float = 0.0        # water retained by this segment
    pending: float = 0.0        # water in transit, not yet settled
    ground_level: float = 0.0   # base elevation of the segment

    @classmethod
    def wall(cls, position: int) -> "Segment":
        """Boundary segment that is higher than anything, so it never receives water."""
        return cls(range(position, position + 1), 0.0, -math.inf, math.inf)

    @property
    def width(self) -> int:
        return len(self.members)

    @property
    def water_level(self) -> float:
        """Depth of settled water spread over the segment width."""
        return self.settled / self.width

    @property
    def level(self) -> float:
        """Water surface elevation = ground level + settled depth."""
        return self.ground_level + self.water_level

    @property
    def is_wall(self) -> bool:
        return math.isinf(self.ground_level)

    def owns(self, position: int) -> bool:
        return position in self.members


class Shape(Enum):
    """Local terrain shape of a segment relative to its two neighbours."""
    HILL = "hill"
    SLOPE_LEFT = "slope_left"
    SLOPE_RIGHT = "slope_right"
    PIT = "pit"
    FLAT = "flat"


@dataclass
class MassBalance:
    """
    Tracks water mass balance for diagnostics.

    The walls are higher than every real segment, so no water ever flows
    off the landscape: all rainfall ends up either stored or pending.
    """
    total_rainfall: float = 0.0     # water added by rainfall
    stored_volume: float = 0.0      # water held above the terrain
    pending_volume: float = 0.0     # water left in transit

    @property
    def expected_volume(self) -> float:
        """Volume that should still be on the landscape."""
        return self.total_rainfall

    @property
    def current_volume(self) -> float:
        return self.stored_volume + self.pending_volume

    @property
    def balance_error(self) -> float:
        """Absolute difference between expected and actual volume."""
        return abs(self.current_volume - self.expected_volume)

    @property
    def relative_error(self) -> float:
        """Relative mass balance error (0-1)."""
        if self.expected_volume > 0:
            return self.balance_error / self.expected_volume
        return 0.0 if self.current_volume < 1e-9 else 1.0


@dataclass
class SimulationResult:
    """Complete simulation result."""
    params: SimulationParams
    heights: np.ndarray             # terrain height per position
    levels: np.ndarray              # water surface per position
    depths: np.ndarray              # levels - heights
    segments: List[Segment]         # final segment collection, highest first
    excess_history: List[float] = field(default_factory=list)
    steps: int = 0
    mass_balance: MassBalance = field(default_factory=MassBalance)

    @property
    def max_depth(self) -> float:
        return float(np.max(self.depths)) if self.depths.size else 0.0

    @property
    def flooded_mask(self) -> np.ndarray:
        """Boolean mask of positions holding water."""
        return self.depths > 0


def create_graph(hours: float, heights: Sequence[float]) -> List[Segment]:
    """
    Build the initial segment collection.

    Args:
        hours: Rainfall duration; becomes the pending water of every position
        heights: Terrain height per position

    Returns:
        One single-position segment per height, sorted from highest to lowest
        level (stable for equal levels), followed by the left and right walls.
    """
    segments = [
        Segment(range(index, index + 1), 0.0, float(hours), float(height))
        for index, height in enumerate(heights)
    ]
    segments.sort(key=lambda segment: segment.level, reverse=True)
    return segments + [Segment.wall(-1), Segment.wall(len(segments))]


def _owner_index(segments: Sequence[Segment], position: int) -> int:
    for index, segment in enumerate(segments):
        if segment.owns(position):
            return index
    return -1


def structural_neighbor(
    segment: Segment,
    segments: Sequence[Segment],
    direction: int
) -> Tuple[Optional[Segment], int]:
    """
    Find the segment owning the position just outside `segment`.

    Args:
        segment: Segment whose neighbour is wanted
        segments: Current segment collection
        direction: LEFT or RIGHT

    Returns:
        Tuple of (neighbour, index in `segments`), or (None, -1) past the walls
    """
    if direction == LEFT:
        boundary = segment.members[0] - 1
    else:
        boundary = segment.members[-1] + 1

    index = _owner_index(segments, boundary)
    if index < 0:
        return None, -1
    return segments[index], index


def merge_segments(current: Segment, other: Segment) -> Segment:
    """
    Merge two adjacent segments into one.

    Settled water is folded into the ground level: the merged segment starts
    with no settled water and takes `current.level` as its ground level.
    The other operand's level is dropped, which is only lossless because
    merges happen between equal levels.
    """
    start = min(current.members.start, other.members.start)
    stop = max(current.members.stop, other.members.stop)
    return Segment(
        members=range(start, stop),
        settled=0.0,
        pending=current.pending + other.pending,
        ground_level=current.level
    )


def merge_same_level_neighbors(segments: List[Segment]) -> List[Segment]:
    """
    Fuse runs of adjacent segments that already share a level.

    Neighbours are resolved against the input collection; a merged segment
    takes the place of its right neighbour in the queue so the run keeps
    growing until a different level is reached.
    """
    current = segments[0] if segments else None
    rest = list(segments[1:])
    processed = []

    while current is not None:
        right, _ = structural_neighbor(current, segments, RIGHT)

        if (
            right is not None
            and not right.is_wall
            and not current.is_wall
            and current.level == right.level
            and right in rest
        ):
            rest[rest.index(right)] = merge_segments(current, right)
        else:
            processed.append(current)

        current = rest.pop(0) if rest else None

    return processed


def classify(current: Segment, left: Segment, right: Segment) -> Shape:
    """Classify `current` as hill, slope or pit against its neighbours."""
    if current.level > left.level and current.level > right.level:
        return Shape.HILL
    if current.level > left.level:
        return Shape.SLOPE_LEFT
    if current.level > right.level:
        return Shape.SLOPE_RIGHT
    if current.level < left.level and current.level < right.level:
        return Shape.PIT
    return Shape.FLAT


def available_capacity(current: Segment, left: Segment, right: Segment) -> float:
    """Free pit volume below the lower of the two rims."""
    depth = min(left.level, right.level) - current.level
    return current.width * depth - current.settled


def transfer_water(
    amount: float,
    source: Segment,
    target: Segment
) -> Tuple[Segment, Segment]:
    """Move `amount` of pending water from `source` to `target`."""
    if amount == 0:
        return source, target
    return (
        replace(source, pending=source.pending - amount),
        replace(target, pending=target.pending + amount)
    )


def fill_pit(amount: float, segment: Segment) -> Segment:
    """Settle `amount` of the segment's pending water."""
    if amount == 0:
        return segment
    return replace(
        segment,
        settled=segment.settled + amount,
        pending=segment.pending - amount
    )


def excess_total(segments: Sequence[Segment]) -> float:
    """Sum of pending water over all non-wall segments."""
    return sum(
        segment.pending for segment in segments if math.isfinite(segment.pending)
    )


def lookup_levels(segments: Sequence[Segment], count: int) -> List[float]:
    """Water surface of the segment owning each of the first `count` positions."""
    return [segments[_owner_index(segments, position)].level for position in range(count)]


class RainfallSimulator:
    """
    Rainfall accumulation engine using segment relaxation.

    The simulation works by:
    1. Building one segment per position plus two walls, highest first
    2. Pre-merging adjacent segments that already share a level
    3. Downhill pass: hills and slopes hand their pending water to lower
       neighbours, pits settle as much as their rims allow
    4. Uphill pass: pits settle whatever reached them late
    5. Merging neighbours whenever their levels become equal

    Both passes stop as soon as no pending water is left.
    """

    def __init__(self, landscape: Sequence[float], params: Optional[SimulationParams] = None):
        """
        Initialize the simulator with a landscape profile.

        Args:
            landscape: Terrain height per position
            params: Simulation parameters (uses defaults if None)
        """
        self.params = params or SimulationParams()
        self.heights = np.asarray(landscape, dtype=np.float64).reshape(-1)

        if not math.isfinite(self.params.hours) or self.params.hours < 0:
            raise ValueError(f"hours must be a finite non-negative number, got {self.params.hours!r}")
        if not np.all(np.isfinite(self.heights)):
            raise ValueError("landscape heights must be finite numbers")

        self.reset()

    @property
    def name(self) -> str:
        return "Segment relaxation"

    def reset(self) -> None:
        """Reset run bookkeeping to its initial state."""
        self._excess_total = 0.0
        self._excess_history = []
        self._steps = 0

    def build_graph(self) -> List[Segment]:
        """Create the segment graph and optionally pre-merge equal levels."""
        logger.info("Building segment graph",
                    positions=len(self.heights), hours=self.params.hours)
        segments = create_graph(self.params.hours, self.heights.tolist())

        if self.params.premerge:
            segments = merge_same_level_neighbors(segments)
            logger.info("Same-level pre-merge completed", segments=len(segments))

        return segments

    def _record_step(
        self,
        pass_name: str,
        shape: Shape,
        segments: List[Segment],
        progress_callback: Optional[Callable[[int, str, dict], None]]
    ) -> None:
        self._steps += 1
        if self.params.record_history:
            self._excess_history.append(self._excess_total)

        if progress_callback:
            stats = {
                'step': self._steps,
                'pass': pass_name,
                'shape': shape.value,
                'excess_total': self._excess_total,
                'segments': len(segments),
            }
            progress_callback(self._steps, pass_name, stats)

    def _sweep(
        self,
        segments: List[Segment],
        downhill: bool,
        progress_callback: Optional[Callable[[int, str, dict], None]] = None
    ) -> List[Segment]:
        """
        Run one relaxation pass over `segments` in their stored order.

        The downhill pass handles hills, slopes, pits and ties; the uphill
        pass only pits and ties. After a transition the cursor queue restarts
        right behind the position the cursor segment held when the transition
        began. A tie re-evaluates the merged segment before advancing.
        """
        pass_name = "downhill" if downhill else "uphill"
        segments = list(segments)
        current = segments[0] if segments else None
        queue_start = 1

        while current is not None and self._excess_total > 0:
            left, left_index = structural_neighbor(current, segments, LEFT)
            right, right_index = structural_neighbor(current, segments, RIGHT)

            if left is not None and right is not None:
                index = _owner_index(segments, current.members[0])
                shape = classify(current, left, right)
                moved = True

                if downhill and shape is Shape.HILL:
                    half = 0.5 * current.pending
                    current, left = transfer_water(half, current, left)
                    current, right = transfer_water(half, current, right)
                elif downhill and shape is Shape.SLOPE_LEFT:
                    current, left = transfer_water(current.pending, current, left)
                elif downhill and shape is Shape.SLOPE_RIGHT:
                    current, right = transfer_water(current.pending, current, right)
                elif shape is Shape.PIT:
                    capacity = available_capacity(current, left, right)
                    delta = min(current.pending, capacity)
                    self._excess_total -= delta
                    current = fill_pit(delta, current)
                else:
                    moved = False

                if moved:
                    segments[left_index] = left
                    segments[right_index] = right
                    segments[index] = current
                    queue_start = index + 1
                    self._record_step(pass_name, shape, segments, progress_callback)

                if current.level == left.level or current.level == right.level:
                    neighbor_index = left_index if current.level == left.level else right_index
                    current = merge_segments(current, segments[neighbor_index])
                    segments[index] = current
                    del segments[neighbor_index]
                    queue_start = index + 1
                    self._record_step(pass_name, Shape.FLAT, segments, progress_callback)
                    continue

            current = segments[queue_start] if queue_start < len(segments) else None
            queue_start += 1

        logger.info(f"Relaxation {pass_name} pass completed",
                    steps=self._steps, excess_total=self._excess_total)
        return segments

    def process_graph(
        self,
        segments: List[Segment],
        progress_callback: Optional[Callable[[int, str, dict], None]] = None
    ) -> List[Segment]:
        """
        Relax the segment graph until no pending water can move.

        Args:
            segments: Segment collection, highest level first
            progress_callback: Optional callback(step, pass_name, stats)

        Returns:
            Relaxed segment collection, highest level first
        """
        self._excess_total = excess_total(segments)

        segments = self._sweep(segments, downhill=True, progress_callback=progress_callback)
        segments = self._sweep(segments[::-1], downhill=False, progress_callback=progress_callback)
        return segments[::-1]

    def run(
        self,
        progress_callback: Optional[Callable[[int, str, dict], None]] = None
    ) -> SimulationResult:
        """
        Run the complete simulation.

        Args:
            progress_callback: Optional callback(step, pass_name, stats) invoked
                               after every relaxation step

        Returns:
            SimulationResult with per-position levels and depths
        """
        self.reset()

        segments = self.build_graph()
        segments = self.process_graph(segments, progress_callback)

        levels = np.array(lookup_levels(segments, len(self.heights)), dtype=np.float64)
        depths = levels - self.heights

        mass_balance = MassBalance(
            total_rainfall=self.params.hours * len(self.heights),
            stored_volume=float(np.sum(depths)),
            pending_volume=excess_total(segments),
        )

        if mass_balance.relative_error > self.params.balance_tolerance:
            warnings.warn(
                f"Mass balance error exceeds tolerance: {mass_balance.relative_error:.2e}. "
                "Results may be unreliable.",
                RuntimeWarning
            )

        logger.info("Simulation completed",
                    steps=self._steps, segments=len(segments),
                    stored_volume=mass_balance.stored_volume,
                    pending_volume=mass_balance.pending_volume)

        return SimulationResult(
            params=self.params,
            heights=self.heights.copy(),
            levels=levels,
            depths=depths,
            segments=segments,
            excess_history=list(self._excess_history),
            steps=self._steps,
            mass_balance=mass_balance
        )


def simulate(hours: float, heights: Sequence[float], premerge: bool = True) -> SimulationResult:
    """Run the engine once with default bookkeeping."""
    params = SimulationParams(hours=hours, premerge=premerge)
    return RainfallSimulator(heights, params).run()


def calculate_water_levels(hours: float, heights: Sequence[float]) -> Tuple[List[float], List[float]]:
    """
    Compute water surface and depth per position.

    Returns:
        Tuple of (levels, depths) as plain lists
    """
    result = simulate(hours, heights)
    return result.levels.tolist(), result.depths.tolist()


# Quick test
if __name__ == "__main__":
    levels, depths = calculate_water_levels(1, [3, 1, 6, 4, 8, 9])
    print(f"levels: {levels}")
    print(f"depths: {depths}")
