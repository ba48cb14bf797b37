"""Horizontal line detection and staff/tab line grouping.

Rows of the binary image are scored by their longest ink run and their
total ink fraction. Qualifying rows are merged into lines, and lines are
grouped into six-line tabs first and five-line staves second so a tab is
never half-matched as a staff.
"""

import logging

import numpy as np

from guitar_score_ocr.models.core_models import DetectedLine, LineGroup, LineGroupKind

logger = logging.getLogger(__name__)

# (max gap std/mean, min mean gap, max mean gap)
TAB_SPACING_RULE = (0.20, 5.0, 60.0)
STAFF_SPACING_RULE = (0.15, 8.0, 60.0)


def longest_runs(ink: np.ndarray) -> np.ndarray:
    """Length of the longest run of True values in each row.

    Args:
        ink: 2D boolean array.

    Returns:
        1D int array with one entry per row.
    """
    width = ink.shape[1]
    columns = np.arange(width, dtype=np.int32)
    last_gap = np.where(ink, np.int32(-1), columns)
    last_gap = np.maximum.accumulate(last_gap, axis=1)
    return (columns - last_gap).max(axis=1)


def merge_adjacent_lines(
    samples: list[tuple[float, float]], max_gap: float = 3
) -> list[DetectedLine]:
    """Merge row samples closer than ``max_gap`` into single lines.

    Args:
        samples: (y, strength) pairs sorted by y.
        max_gap: Largest y-distance between consecutive samples of one line.

    Returns:
        One DetectedLine per cluster at the mean y, keeping the max strength.
    """
    lines = []
    cluster: list[tuple[float, float]] = []
    for y, strength in samples:
        if cluster and y - cluster[-1][0] > max_gap:
            lines.append(_cluster_to_line(cluster))
            cluster = []
        cluster.append((y, strength))
    if cluster:
        lines.append(_cluster_to_line(cluster))
    return lines


def _cluster_to_line(cluster: list[tuple[float, float]]) -> DetectedLine:
    return DetectedLine(
        y=float(np.mean([y for y, _ in cluster])),
        strength=min(1.0, max(s for _, s in cluster)),
    )


def detect_horizontal_lines(
    binary: np.ndarray, min_run_ratio: float = 0.3, min_black_ratio: float = 0.4
) -> list[DetectedLine]:
    """Find horizontal lines by row ink density.

    A row is a line sample when its longest ink run exceeds
    ``min_run_ratio`` of the width, or its total ink exceeds
    ``min_black_ratio`` of the width (lines broken by fret digits).

    Args:
        binary: Binarized image (ink < 128).
        min_run_ratio: Longest-run threshold as a fraction of the width.
        min_black_ratio: Total-ink threshold as a fraction of the width.

    Returns:
        Lines sorted top to bottom.
    """
    ink = binary < 128
    width = ink.shape[1]
    if width == 0:
        return []
    run_ratio = longest_runs(ink) / width
    black_ratio = ink.sum(axis=1) / width
    rows = np.flatnonzero((run_ratio > min_run_ratio) | (black_ratio > min_black_ratio))
    samples = [
        (float(y), float(max(run_ratio[y], black_ratio[y]))) for y in rows
    ]
    lines = merge_adjacent_lines(samples)
    logger.debug(f"Detected {len(lines)} horizontal lines from {len(rows)} rows")
    return lines


def is_equally_spaced(
    positions: list[float], max_deviation: float, min_gap: float, max_gap: float
) -> bool:
    """Check that consecutive gaps are regular and within a size range.

    Args:
        positions: Ascending line positions.
        max_deviation: Largest allowed gap std-dev as a fraction of the mean gap.
        min_gap: Smallest allowed mean gap.
        max_gap: Largest allowed mean gap.
    """
    gaps = np.diff(positions)
    mean_gap = float(np.mean(gaps))
    if not min_gap <= mean_gap <= max_gap:
        return False
    return float(np.std(gaps)) < max_deviation * mean_gap


def _scan_windows(
    positions: list[float],
    candidates: list[int],
    size: int,
    rule: tuple[float, float, float],
) -> list[list[int]]:
    """Slide a window over consecutive candidate indices and accept regular ones."""
    accepted = []
    start = 0
    while start + size <= len(candidates):
        window = candidates[start : start + size]
        contiguous = window[-1] - window[0] == size - 1
        if contiguous and is_equally_spaced([positions[i] for i in window], *rule):
            accepted.append(window)
            start += size
        else:
            start += 1
    return accepted


def find_line_groups(lines: list[DetectedLine]) -> list[LineGroup]:
    """Group lines into Tab6 and Staff5 groups.

    Six-line windows are tried first; the lines they consume are then
    excluded from the five-line staff scan. Fewer than five lines yields
    no groups.

    Args:
        lines: Detected lines sorted top to bottom.

    Returns:
        Line groups sorted by their top line.
    """
    positions = sorted(line.y for line in lines)
    if len(positions) < 5:
        logger.debug(f"Only {len(positions)} lines, no groups possible")
        return []

    groups = []
    all_indices = list(range(len(positions)))
    used: set[int] = set()
    for window in _scan_windows(positions, all_indices, 6, TAB_SPACING_RULE):
        groups.append(_make_group(LineGroupKind.TAB6, [positions[i] for i in window]))
        used.update(window)

    free = [i for i in all_indices if i not in used]
    for window in _scan_windows(positions, free, 5, STAFF_SPACING_RULE):
        groups.append(_make_group(LineGroupKind.STAFF5, [positions[i] for i in window]))

    groups.sort(key=lambda group: group.top)
    logger.debug(
        f"Found {sum(g.kind is LineGroupKind.TAB6 for g in groups)} tab and "
        f"{sum(g.kind is LineGroupKind.STAFF5 for g in groups)} staff groups"
    )
    return groups


def _make_group(kind: LineGroupKind, lines: list[float]) -> LineGroup:
    return LineGroup(kind=kind, lines=lines, spacing=float(np.mean(np.diff(lines))))


def detect_line_groups(binary: np.ndarray) -> list[LineGroup]:
    """Detect lines in a binary image and group them into staves and tabs."""
    return find_line_groups(detect_horizontal_lines(binary))
