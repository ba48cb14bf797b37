"""
Debug overlay rendering for the recognition pipeline.

Draws detected systems, their chord and technique bands, and the x
positions of recognized events on top of the preprocessed page so a
developer can see what each stage found.
"""

from collections.abc import Sequence

import cv2
import numpy as np

from guitar_score_ocr.models.core_models import System, SystemType

# RGB colors
SYSTEM_COLORS = {
    SystemType.STAFF: (0, 0, 255),
    SystemType.TAB: (0, 160, 0),
    SystemType.STAFF_TAB: (160, 0, 160),
    SystemType.JIANPU: (255, 128, 0),
}
LINE_COLOR = (255, 0, 0)
BAND_COLOR = (200, 200, 0)
NOTE_COLOR = (255, 0, 0)
MARK_COLOR = (0, 0, 0)


def _to_rgb(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    return image.copy()


def draw_systems(image: np.ndarray, systems: Sequence[System]) -> np.ndarray:
    """Outline systems and bands and redraw their detected lines.

    Args:
        image: Greyscale, RGB or RGBA page.
        systems: Systems to draw.

    Returns:
        RGB copy of the page with the annotations.
    """
    canvas = _to_rgb(image)
    width = canvas.shape[1]
    for system in systems:
        color = SYSTEM_COLORS[system.type]
        cv2.rectangle(canvas, (0, system.top), (width - 1, system.bottom), color, 2)
        for line_y in (system.staff_lines or []) + (system.tab_lines or []):
            cv2.line(canvas, (0, int(line_y)), (width - 1, int(line_y)), LINE_COLOR, 1)
        for band in (system.chord_band, system.technique_band):
            if band is not None and band.height > 0:
                cv2.rectangle(
                    canvas, (0, band.top), (width - 1, band.bottom), BAND_COLOR, 1
                )
        cv2.putText(
            canvas,
            f"{system.system_index}:{system.type.value}",
            (4, max(12, system.top - 4)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.4,
            color,
            1,
        )
    return canvas


def draw_events(canvas: np.ndarray, system: System, events: Sequence) -> np.ndarray:
    """Mark event x positions inside a system, in place.

    Notes get a red tick labelled with their MIDI number; barlines, rests
    and ties get a thin black tick.
    """
    for event in events:
        if event.x_center is None:
            continue
        x = int(round(event.x_center))
        if event.kind == "note":
            cv2.line(canvas, (x, system.top), (x, system.bottom), NOTE_COLOR, 1)
            cv2.putText(
                canvas,
                str(event.midi),
                (x + 2, system.bottom + 12),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.35,
                NOTE_COLOR,
                1,
            )
        else:
            cv2.line(canvas, (x, system.top), (x, system.bottom), MARK_COLOR, 1)
    return canvas


def create_debug_overlay(
    image: np.ndarray, recognized: Sequence[tuple[System, Sequence]]
) -> np.ndarray:
    """Render systems and their events on one image.

    Args:
        image: Page the systems were detected on.
        recognized: (system, events) pairs.

    Returns:
        RGB overlay image with the same size as ``image``.
    """
    canvas = draw_systems(image, [system for system, _ in recognized])
    for system, events in recognized:
        draw_events(canvas, system, events)
    return canvas
