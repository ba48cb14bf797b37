"""System grouping.

Turns line groups into typed systems in document order (staff, tab, or a
staff paired with the tab right below it) and finds text rows for jianpu
scores, which have no long lines at all.
"""

import logging
import math

import numpy as np

from guitar_score_ocr.models.core_models import (
    Band,
    LineGroup,
    LineGroupKind,
    System,
    SystemType,
)

logger = logging.getLogger(__name__)

DEFAULT_SPACING = 15.0
PAIRING_GAP_FACTOR = 3.0
CHORD_BAND_FACTOR = 3.0
JIANPU_ROW_DENSITY = 0.02
JIANPU_MIN_ROW_HEIGHT = 10
JIANPU_MERGE_GAP = 15


def compute_chord_band(top: int, spacing: float | None, previous_bottom: int) -> Band:
    """Band above a system where chord symbols are printed.

    Args:
        top: First row of the system.
        spacing: Line spacing of the system; 15 px when unknown.
        previous_bottom: Last row of the previous system, 0 for the first.

    Returns:
        Band from max(previous_bottom, top - 3 * spacing) to top.
    """
    spacing = spacing or DEFAULT_SPACING
    band_top = max(previous_bottom, int(math.floor(top - CHORD_BAND_FACTOR * spacing)))
    return Band(top=max(0, min(band_top, top)), bottom=top)


def compute_technique_band(staff_lines: list[float], tab_lines: list[float]) -> Band:
    """Band between the bottom staff line and the top tab line."""
    return Band(
        top=int(math.ceil(staff_lines[-1])), bottom=int(math.floor(tab_lines[0]))
    )


def _is_paired(staff: LineGroup, tab: LineGroup) -> bool:
    gap = tab.top - staff.bottom
    return 0 < gap < PAIRING_GAP_FACTOR * staff.spacing


def group_systems(groups: list[LineGroup]) -> list[System]:
    """Build typed systems from line groups.

    A staff immediately followed by a tab closer than three staff spacings
    becomes a StaffTab system; remaining groups become Staff or Tab systems.
    Chord bands (and technique bands for StaffTab) are attached.

    Args:
        groups: Line groups sorted by top line.

    Returns:
        Systems in document order.
    """
    systems = []
    index = 0
    groups = sorted(groups, key=lambda g: g.top)
    while index < len(groups):
        group = groups[index]
        following = groups[index + 1] if index + 1 < len(groups) else None

        if group.kind is LineGroupKind.STAFF5:
            if following is not None and following.kind is LineGroupKind.TAB6 and _is_paired(
                group, following
            ):
                systems.append(
                    System(
                        type=SystemType.STAFF_TAB,
                        top=int(math.floor(group.top)),
                        bottom=int(math.ceil(following.bottom)),
                        staff_lines=group.lines,
                        staff_spacing=group.spacing,
                        tab_lines=following.lines,
                        tab_spacing=following.spacing,
                        technique_band=compute_technique_band(
                            group.lines, following.lines
                        ),
                    )
                )
                index += 2
                continue
            systems.append(
                System(
                    type=SystemType.STAFF,
                    top=int(math.floor(group.top)),
                    bottom=int(math.ceil(group.bottom)),
                    staff_lines=group.lines,
                    staff_spacing=group.spacing,
                )
            )
        else:
            systems.append(
                System(
                    type=SystemType.TAB,
                    top=int(math.floor(group.top)),
                    bottom=int(math.ceil(group.bottom)),
                    tab_lines=group.lines,
                    tab_spacing=group.spacing,
                )
            )
        index += 1

    return _finalize(systems)


def _finalize(systems: list[System]) -> list[System]:
    """Number the systems and attach their chord bands."""
    finalized = []
    previous_bottom = 0
    for number, system in enumerate(systems):
        spacing = system.staff_spacing or system.tab_spacing
        finalized.append(
            system.model_copy(
                update={
                    "system_index": number,
                    "chord_band": compute_chord_band(
                        system.top, spacing, previous_bottom
                    ),
                }
            )
        )
        previous_bottom = system.bottom
    logger.debug(
        f"Grouped {len(finalized)} systems: "
        f"{[system.type.value for system in finalized]}"
    )
    return finalized


def detect_jianpu_rows(binary: np.ndarray) -> list[System]:
    """Find text rows of a jianpu score.

    Rows whose ink fraction exceeds 2% form regions; regions of 10 px or
    less are dropped as noise and regions closer than 15 px are merged.

    Args:
        binary: Binarized image (ink < 128).

    Returns:
        One Jianpu system per merged region, top to bottom.
    """
    height, width = binary.shape
    if width == 0:
        return []
    density = (binary < 128).sum(axis=1) / width
    active = density > JIANPU_ROW_DENSITY

    regions: list[list[int]] = []
    start = None
    for y in range(height):
        if active[y] and start is None:
            start = y
        elif not active[y] and start is not None:
            if y - start > JIANPU_MIN_ROW_HEIGHT:
                regions.append([start, y])
            start = None
    if start is not None:
        regions.append([start, height])

    merged: list[list[int]] = []
    for region in regions:
        if merged and region[0] - merged[-1][1] < JIANPU_MERGE_GAP:
            merged[-1][1] = region[1]
        else:
            merged.append(region)

    systems = [
        System(type=SystemType.JIANPU, top=top, bottom=bottom) for top, bottom in merged
    ]
    logger.debug(f"Detected {len(systems)} jianpu rows")
    return _finalize(systems)
