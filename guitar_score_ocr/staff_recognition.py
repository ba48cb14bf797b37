"""Staff notation recognition.

Staff lines are erased, the remaining ink is split into connected
components and noteheads are picked out by size, aspect ratio, fill and
circularity. Pitch comes from the vertical position relative to the
bottom staff line; accidentals and barlines are found geometrically.
"""

import logging
import math

import cv2
import numpy as np
from pydantic import BaseModel, Field

from guitar_score_ocr.models.core_models import (
    Accidental,
    BarlineEvent,
    Clef,
    Duration,
    NoteEvent,
)
from guitar_score_ocr.music_theory import staff_position_to_midi

logger = logging.getLogger(__name__)

INK_THRESHOLD = 128
LINE_THICKNESS = 2
CONNECTION_REACH = 3
STAFF_MARGIN_FACTOR = 2.5
BARLINE_COVERAGE = 0.7
BARLINE_MIN_DISTANCE = 5
ACCIDENTAL_CONFIDENCE = 60.0


class Component(BaseModel):
    """A connected ink region.

    Attributes:
        label: Label assigned by the connected component pass.
        x: Left edge.
        y: Top edge.
        width: Bounding box width.
        height: Bounding box height.
        area: Number of ink pixels.
        cx: Centroid x.
        cy: Centroid y.
    """

    label: int
    x: int
    y: int
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    area: int = Field(..., gt=0)
    cx: float
    cy: float

    @property
    def aspect(self) -> float:
        return self.width / self.height

    @property
    def fill(self) -> float:
        return self.area / (self.width * self.height)


class NoteheadShape(BaseModel):
    """Classification of a component accepted as a notehead."""

    filled: bool
    confidence: float = Field(..., ge=0, le=100)


def remove_staff_lines(
    binary: np.ndarray, staff_lines: list[float], thickness: int = LINE_THICKNESS
) -> np.ndarray:
    """Erase staff lines while keeping symbols that cross them.

    An ink pixel within ``thickness`` rows of a line is erased unless the
    same column has ink in the three rows just beyond that band, above or
    below the line.

    Args:
        binary: Binary image (ink < 128).
        staff_lines: Line positions in the coordinates of ``binary``.
        thickness: Half-height of the band erased around each line.

    Returns:
        A copy of ``binary`` without the lines.
    """
    output = binary.copy()
    ink = binary < INK_THRESHOLD
    height = binary.shape[0]
    for line in staff_lines:
        line_y = int(round(line))
        check_rows = [
            line_y + sign * offset
            for sign in (-1, 1)
            for offset in range(thickness + 1, thickness + 1 + CONNECTION_REACH)
        ]
        check_rows = [row for row in check_rows if 0 <= row < height]
        if check_rows:
            connected = ink[check_rows].any(axis=0)
        else:
            connected = np.zeros(binary.shape[1], dtype=bool)

        for row in range(line_y - thickness, line_y + thickness + 1):
            if 0 <= row < height:
                output[row, ink[row] & ~connected] = 255
    return output


def find_components(binary: np.ndarray) -> list[Component]:
    """Label 4-connected ink regions of a binary image."""
    ink = (binary < INK_THRESHOLD).astype(np.uint8)
    count, _, stats, centroids = cv2.connectedComponentsWithStats(ink, connectivity=4)
    return [
        Component(
            label=label,
            x=int(stats[label, cv2.CC_STAT_LEFT]),
            y=int(stats[label, cv2.CC_STAT_TOP]),
            width=int(stats[label, cv2.CC_STAT_WIDTH]),
            height=int(stats[label, cv2.CC_STAT_HEIGHT]),
            area=int(stats[label, cv2.CC_STAT_AREA]),
            cx=float(centroids[label, 0]),
            cy=float(centroids[label, 1]),
        )
        # Label 0 is the background
        for label in range(1, count)
    ]


def circularity(component: Component) -> float:
    """4*pi*area over the squared perimeter of the bounding ellipse, capped at 1."""
    perimeter = math.pi * (component.width + component.height) / 2
    return min(1.0, 4 * math.pi * component.area / perimeter**2)


def classify_notehead(component: Component, spacing: float) -> NoteheadShape | None:
    """Decide whether a component is a notehead.

    Args:
        component: Candidate region.
        spacing: Staff line spacing.

    Returns:
        The notehead shape, or None when any criterion fails.
    """
    if min(component.width, component.height) < 0.5 * spacing:
        return None
    if max(component.width, component.height) > 2.5 * spacing:
        return None
    if not 0.5 <= component.aspect <= 2.5:
        return None

    fill = component.fill
    if fill > 0.6:
        filled, confidence = True, min(fill * 100, 95.0)
    elif fill > 0.3:
        filled, confidence = False, fill * 150
    else:
        return None

    roundness = circularity(component)
    if roundness < 0.4:
        return None
    return NoteheadShape(filled=filled, confidence=min(100.0, confidence * roundness))


def staff_position(y: float, bottom_line: float, spacing: float) -> int:
    """Half-gap steps from the bottom staff line to ``y`` (up is positive)."""
    return int(round((bottom_line - y) / (spacing / 2)))


def detect_accidental(
    components: list[Component], head: Component, spacing: float
) -> Accidental | None:
    """Look for a sharp or flat just left of a notehead.

    Candidates are components whose centroid lies between two spacings and
    0.3 spacing left of the head and within one spacing vertically. The
    stricter flat shape is tested before the sharp shape.
    """
    for candidate in components:
        if candidate.label == head.label:
            continue
        if not head.cx - 2 * spacing <= candidate.cx <= head.cx - 0.3 * spacing:
            continue
        if not head.cy - spacing <= candidate.cy <= head.cy + spacing:
            continue
        if candidate.aspect < 0.6 and candidate.height > 1.2 * spacing:
            return Accidental.FLAT
        if candidate.aspect < 0.8 and candidate.height > spacing:
            return Accidental.SHARP
    return None


def collapse_chords(notes: list[NoteEvent], spacing: float) -> list[NoteEvent]:
    """Keep the highest note of heads stacked at the same x.

    Heads closer than half a spacing to the previous head are treated as
    one chord.

    Args:
        notes: Notes with ``x_center`` set.
        spacing: Staff line spacing.

    Returns:
        One note per chord, sorted by x.
    """
    groups: list[list[NoteEvent]] = []
    last_x = -math.inf
    for note in sorted(notes, key=lambda n: n.x_center):
        if groups and note.x_center - last_x < spacing / 2:
            groups[-1].append(note)
        else:
            groups.append([note])
        last_x = note.x_center
    return [max(group, key=lambda n: n.midi) for group in groups]


def detect_barlines(binary: np.ndarray, top_line: float, bottom_line: float) -> list[int]:
    """Columns of vertical lines spanning the staff.

    A column qualifies when at least 70% of the rows from the top to the
    bottom line are ink; qualifying columns closer than 5 px to the
    previous barline are skipped.

    Returns:
        Barline x positions, left to right.
    """
    top = max(0, int(round(top_line)))
    bottom = min(binary.shape[0] - 1, int(round(bottom_line)))
    staff_height = bottom - top
    if staff_height <= 0:
        return []
    coverage = (binary[top : bottom + 1] < INK_THRESHOLD).sum(axis=0) / staff_height

    barlines: list[int] = []
    for x in np.flatnonzero(coverage >= BARLINE_COVERAGE):
        if not barlines or x - barlines[-1] >= BARLINE_MIN_DISTANCE:
            barlines.append(int(x))
    return barlines


class StaffRecognizer:
    """Reads noteheads and barlines from a five-line staff.

    Attributes:
        clef: Clef used to map positions to pitches.
        remove_lines: Whether to erase staff lines before labeling.
    """

    def __init__(self, clef: Clef = Clef.TREBLE, remove_lines: bool = True):
        self.clef = clef
        self.remove_lines = remove_lines

    def detect_notes(
        self, region: np.ndarray, staff_lines: list[float], spacing: float, offset_y: int
    ) -> list[NoteEvent]:
        """Find noteheads in a cropped staff region.

        Args:
            region: Binary crop containing the staff.
            staff_lines: Line positions relative to the crop.
            spacing: Staff line spacing.
            offset_y: Page row of the crop top, used in log messages.
        """
        cleaned = remove_staff_lines(region, staff_lines) if self.remove_lines else region
        components = find_components(cleaned)

        notes = []
        for component in components:
            shape = classify_notehead(component, spacing)
            if shape is None:
                continue
            position = staff_position(component.cy, staff_lines[-1], spacing)
            midi = staff_position_to_midi(position, self.clef)
            accidental = detect_accidental(components, component, spacing)
            confidence = shape.confidence
            if accidental is not None:
                midi += accidental.semitones
                confidence = (confidence + ACCIDENTAL_CONFIDENCE) / 2
            if not 0 <= midi <= 127:
                logger.debug(f"Skipping head at y={component.cy + offset_y}: midi {midi}")
                continue
            notes.append(
                NoteEvent(
                    midi=midi,
                    duration=Duration.QUARTER if shape.filled else Duration.HALF,
                    accidental=accidental,
                    confidence=confidence,
                    x_center=component.cx,
                )
            )
        return collapse_chords(notes, spacing)

    def recognize(
        self,
        binary: np.ndarray,
        staff_lines: list[float],
        start_index: int = 0,
        spacing: float | None = None,
    ) -> list[NoteEvent | BarlineEvent]:
        """Recognize one staff.

        Args:
            binary: Binarized page (ink < 128).
            staff_lines: Five line positions in page coordinates.
            start_index: Index given to the first emitted event.
            spacing: Line spacing; derived from the lines when omitted.

        Returns:
            Notes and barlines interleaved by x, indexed from ``start_index``.
        """
        if len(staff_lines) != 5:
            raise ValueError(f"Staff needs 5 lines, got {len(staff_lines)}")
        spacing = spacing or float(np.mean(np.diff(staff_lines)))
        margin = STAFF_MARGIN_FACTOR * spacing
        top = max(0, int(math.floor(staff_lines[0] - margin)))
        bottom = min(binary.shape[0], int(math.ceil(staff_lines[-1] + margin)) + 1)
        region = binary[top:bottom]
        local_lines = [line - top for line in staff_lines]

        notes = self.detect_notes(region, local_lines, spacing, top)
        barlines = [
            BarlineEvent(x_center=float(x))
            for x in detect_barlines(region, local_lines[0], local_lines[-1])
        ]
        logger.debug(f"Staff at y={top}: {len(notes)} notes, {len(barlines)} barlines")

        events = sorted(notes + barlines, key=lambda event: event.x_center)
        return [
            event.model_copy(update={"index": start_index + offset})
            for offset, event in enumerate(events)
        ]
