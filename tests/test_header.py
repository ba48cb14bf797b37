import numpy as np
import pytest

from helpers import FakeRecognizer

from guitar_score_ocr.errors import RecognizerError
from guitar_score_ocr.header import (
    extract_header,
    extract_title,
    header_region,
    normalize_key,
    parse_metadata,
)
from guitar_score_ocr.models.core_models import Band, System, SystemType
from guitar_score_ocr.models.pipeline_models import HeaderMetadata, RecognizerOutput
from guitar_score_ocr.recognizer import PageSegMode

SONG_HEADER = "戀曲 1990\nKey: Am\n♩=96\n4/4\n作曲：羅大佑"


def _system(top, bottom):
    return System(type=SystemType.TAB, top=top, bottom=bottom)


def test_parse_full_header():
    metadata = parse_metadata(SONG_HEADER)
    assert metadata.title == "戀曲 1990"
    assert metadata.key == "Am"
    assert metadata.tempo == 96
    assert metadata.time_signature == "4/4"
    assert metadata.composer == "羅大佑"
    assert metadata.lyricist is None
    assert metadata.capo is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("a minor", "Am"),
        ("F♯ Major", "F#"),
        ("Bbmaj", "Bb"),
        ("C min", "Cm"),
        ("E♭", "Eb"),
        ("g", "G"),
    ],
)
def test_normalize_key(raw, expected):
    assert normalize_key(raw) == expected


def test_parse_jianpu_style_header():
    metadata = parse_metadata("晴天\n1=D\nTempo: 120\n詞：方文山\n曲：周杰倫\nCapo 2")
    assert metadata.title == "晴天"
    assert metadata.key == "D"
    assert metadata.tempo == 120
    assert metadata.lyricist == "方文山"
    assert metadata.composer == "周杰倫"
    assert metadata.capo == 2


def test_first_key_pattern_wins():
    assert parse_metadata("Key: G\n1=D").key == "G"


def test_empty_text_gives_empty_metadata():
    assert parse_metadata("   \n") == HeaderMetadata()


def test_extract_title_skips_metadata_and_numbers():
    assert extract_title(["Key: C", "120", "x", "Yesterday"]) == "Yesterday"
    assert extract_title(["4/4", "1=C"]) is None


def test_header_region_above_first_system():
    assert header_region(400, [_system(100, 200), _system(250, 350)]) == Band(top=0, bottom=95)


def test_header_region_too_small():
    assert header_region(400, [_system(24, 200)]) is None
    assert header_region(60, []) is None


def test_header_region_without_systems():
    assert header_region(400, []) == Band(top=0, bottom=100)


def test_extract_header_reads_region_above_systems():
    recognizer = FakeRecognizer(
        "chi_tra+eng", outputs=[RecognizerOutput(text=SONG_HEADER, confidence=80)]
    )
    gray = np.full((300, 600), 255, dtype=np.uint8)

    metadata = extract_header(gray, [_system(100, 200)], recognizer)

    assert recognizer.calls == [(PageSegMode.SINGLE_BLOCK, None, (95, 600))]
    assert metadata.key == "Am"
    assert metadata.raw_text == SONG_HEADER


def test_extract_header_skips_small_region():
    recognizer = FakeRecognizer("chi_tra+eng")
    gray = np.full((300, 600), 255, dtype=np.uint8)
    assert extract_header(gray, [_system(10, 200)], recognizer).title is None
    assert recognizer.calls == []


def test_extract_header_propagates_recognizer_failure():
    recognizer = FakeRecognizer("chi_tra+eng", fail=True)
    gray = np.full((300, 600), 255, dtype=np.uint8)
    with pytest.raises(RecognizerError):
        extract_header(gray, [_system(100, 200)], recognizer)
