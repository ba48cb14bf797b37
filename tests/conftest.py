import math

import cv2
import numpy as np
import pytest

from helpers import FakeFactory, blank_page, draw_lines


@pytest.fixture
def fake_factory():
    return FakeFactory()


@pytest.fixture
def tab_page():
    # Six tab lines 20 px apart with a "3" on the B string
    page = draw_lines(blank_page(), [40, 60, 80, 100, 120, 140])
    cv2.putText(page, "3", (95, 66), cv2.FONT_HERSHEY_SIMPLEX, 0.5, 0, 1)
    return page


@pytest.fixture
def tab_lines():
    return [40.0, 60.0, 80.0, 100.0, 120.0, 140.0]


@pytest.fixture
def staff_tab_page():
    # Staff lines 30-70 and tab lines 100-150
    page = blank_page(600, 220)
    draw_lines(page, [30, 40, 50, 60, 70])
    draw_lines(page, [100, 110, 120, 130, 140, 150])
    return page


@pytest.fixture
def staff_page():
    # Treble staff, bottom line E4 at y=100, 10 px spacing
    page = blank_page(600, 200)
    draw_lines(page, [60, 70, 80, 90, 100])
    return page


@pytest.fixture
def skewed_page():
    def _make(angle_degrees, width=800, height=400):
        page = blank_page(width, height)
        rise = math.tan(math.radians(angle_degrees)) * (width - 100)
        for y in range(80, 320, 40):
            cv2.line(page, (50, y), (width - 50, int(round(y + rise))), 0, 2)
        return page

    return _make


@pytest.fixture
def gradient_image():
    rng = np.random.default_rng(7)
    base = np.tile(np.linspace(40, 220, 48), (40, 1))
    noise = rng.integers(-20, 20, size=base.shape)
    return np.clip(base + noise, 0, 255).astype(np.uint8)
