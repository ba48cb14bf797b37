import numpy as np

from guitar_score_ocr.models.core_models import (
    Band,
    BarlineEvent,
    NoteEvent,
    System,
    SystemType,
)
from guitar_score_ocr.visualization import (
    LINE_COLOR,
    MARK_COLOR,
    NOTE_COLOR,
    create_debug_overlay,
    draw_events,
    draw_systems,
)


def _tab_system():
    return System(
        type=SystemType.TAB,
        top=10,
        bottom=60,
        tab_lines=[10.0, 20.0, 30.0, 40.0, 50.0, 60.0],
        tab_spacing=10.0,
        chord_band=Band(top=0, bottom=10),
    )


def test_draw_systems_returns_rgb_copy():
    gray = np.full((100, 200), 255, dtype=np.uint8)
    canvas = draw_systems(gray, [_tab_system()])
    assert canvas.shape == (100, 200, 3)
    assert tuple(canvas[30, 100]) == LINE_COLOR
    assert (gray == 255).all()


def test_draw_events_marks_notes_and_barlines():
    system = _tab_system()
    canvas = draw_systems(np.full((100, 200), 255, dtype=np.uint8), [system])
    events = [
        NoteEvent(midi=62, x_center=100),
        BarlineEvent(x_center=150),
        BarlineEvent(),
    ]
    draw_events(canvas, system, events)
    assert tuple(canvas[45, 100]) == NOTE_COLOR
    assert tuple(canvas[45, 150]) == MARK_COLOR


def test_create_debug_overlay_from_rgba():
    rgba = np.full((80, 120, 4), 255, dtype=np.uint8)
    overlay = create_debug_overlay(rgba, [])
    assert overlay.shape == (80, 120, 3)
    assert (overlay == 255).all()
