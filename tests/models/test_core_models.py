import pytest
from pydantic import TypeAdapter, ValidationError

from guitar_score_ocr.models import (
    Accidental,
    BarlineEvent,
    BoundingBox,
    Event,
    LineGroup,
    LineGroupKind,
    NoteEvent,
    RecognizedWord,
    RestEvent,
)


def test_bounding_box_properties():
    box = BoundingBox(x0=10, y0=20, x1=30, y1=60)
    assert (box.width, box.height) == (20, 40)
    assert (box.center_x, box.center_y) == (20, 40)


def test_word_char_width():
    word = RecognizedWord(text="12", bbox=BoundingBox(x0=0, y0=0, x1=20, y1=10))
    assert word.char_width == 10
    assert word.confidence == 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"midi": -1},
        {"midi": 128},
        {"midi": 60, "fret": 25},
        {"midi": 60, "source_string": 6},
        {"midi": 60, "confidence": 101},
        {"midi": 60, "chord_symbol": "Hm"},
    ],
)
def test_note_validation_raises(kwargs):
    with pytest.raises(ValidationError):
        NoteEvent(**kwargs)


@pytest.mark.parametrize("chord", ["C", "Am", "F#m7", "Bb", "Gsus4", "D/F#", "Cdim"])
def test_note_accepts_chord_symbols(chord):
    assert NoteEvent(midi=60, chord_symbol=chord).chord_symbol == chord


def test_accidental_semitones():
    assert [a.semitones for a in Accidental] == [1, -1, 0]


def test_line_group_checks_line_count():
    LineGroup(kind=LineGroupKind.STAFF5, lines=[0, 10, 20, 30, 40], spacing=10)
    with pytest.raises(ValidationError):
        LineGroup(kind=LineGroupKind.TAB6, lines=[0, 10, 20, 30, 40], spacing=10)


def test_events_round_trip_through_discriminator():
    adapter = TypeAdapter(list[Event])
    events = adapter.validate_python(
        [{"kind": "note", "midi": 62}, {"kind": "barline"}, {"kind": "rest", "index": 2}]
    )
    assert [type(event) for event in events] == [NoteEvent, BarlineEvent, RestEvent]
    assert adapter.dump_python(events)[0]["kind"] == "note"
