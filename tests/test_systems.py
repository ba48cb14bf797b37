import cv2
import pytest

from helpers import blank_page

from guitar_score_ocr.models.core_models import Band, LineGroup, LineGroupKind, SystemType
from guitar_score_ocr.systems import (
    compute_chord_band,
    detect_jianpu_rows,
    group_systems,
)


def _staff(top, spacing=10.0):
    return LineGroup(
        kind=LineGroupKind.STAFF5,
        lines=[top + i * spacing for i in range(5)],
        spacing=spacing,
    )


def _tab(top, spacing=10.0):
    return LineGroup(
        kind=LineGroupKind.TAB6,
        lines=[top + i * spacing for i in range(6)],
        spacing=spacing,
    )


def test_staff_followed_by_close_tab_is_paired():
    systems = group_systems([_staff(30), _tab(90)])
    assert len(systems) == 1
    system = systems[0]
    assert system.type is SystemType.STAFF_TAB
    assert (system.top, system.bottom) == (30, 140)
    assert system.technique_band == Band(top=70, bottom=90)
    assert system.chord_band == Band(top=0, bottom=30)


def test_gap_of_three_spacings_is_not_paired():
    systems = group_systems([_staff(30), _tab(100)])
    assert [system.type for system in systems] == [SystemType.STAFF, SystemType.TAB]
    assert [system.system_index for system in systems] == [0, 1]


def test_tab_above_staff_is_not_paired():
    systems = group_systems([_tab(30), _staff(90)])
    assert [system.type for system in systems] == [SystemType.TAB, SystemType.STAFF]


def test_chord_band_stops_at_previous_system():
    systems = group_systems([_tab(20), _tab(110)])
    assert systems[0].chord_band == Band(top=0, bottom=20)
    # 110 - 3 * 10 = 80 is above the previous bottom at 70
    assert systems[1].chord_band == Band(top=80, bottom=110)

    crowded = group_systems([_tab(20), _tab(85)])
    assert crowded[1].chord_band == Band(top=70, bottom=85)


@pytest.mark.parametrize(
    "top, spacing, previous, expected",
    [(100, 10.0, 0, (70, 100)), (100, None, 0, (55, 100)), (20, 10.0, 0, (0, 20))],
)
def test_compute_chord_band(top, spacing, previous, expected):
    band = compute_chord_band(top, spacing, previous)
    assert (band.top, band.bottom) == expected


def test_jianpu_rows_merge_and_drop_noise():
    page = blank_page()
    cv2.rectangle(page, (40, 20), (120, 40), 0, -1)
    cv2.rectangle(page, (40, 50), (120, 70), 0, -1)
    cv2.rectangle(page, (40, 90), (120, 95), 0, -1)
    cv2.rectangle(page, (40, 120), (120, 140), 0, -1)

    rows = detect_jianpu_rows(page)

    assert [(row.top, row.bottom) for row in rows] == [(20, 71), (120, 141)]
    assert all(row.type is SystemType.JIANPU for row in rows)
    assert rows[1].chord_band == Band(top=75, bottom=120)


def test_blank_page_has_no_jianpu_rows():
    assert detect_jianpu_rows(blank_page()) == []
