import numpy as np

from guitar_score_ocr.errors import ErrorKind
from guitar_score_ocr.models import (
    BarlineEvent,
    HeaderMetadata,
    LoadedImage,
    NoteEvent,
    PreprocessResult,
    RecognitionResult,
    RecognitionWarning,
    ScoreType,
)


def test_loaded_image_dimensions():
    loaded = LoadedImage(pixels=np.zeros((30, 40, 4), dtype=np.uint8))
    assert (loaded.width, loaded.height) == (40, 30)
    assert loaded.warnings == []


def test_preprocess_result_defaults():
    gray = np.zeros((5, 5), dtype=np.uint8)
    result = PreprocessResult(original=gray, greyscale=gray, processed=gray)
    assert result.binary is result.processed
    assert result.scale == 1.0
    assert not result.was_inverted


def test_header_metadata_defaults():
    metadata = HeaderMetadata()
    assert metadata.title is None
    assert metadata.inferred_defaults == []


def test_result_notes_and_json():
    result = RecognitionResult(
        type=ScoreType.TAB,
        events=[NoteEvent(midi=62), BarlineEvent(index=1)],
        warnings=[RecognitionWarning(kind=ErrorKind.LOW_CONFIDENCE)],
        overlay=np.zeros((2, 2, 3), dtype=np.uint8),
    )
    assert [note.midi for note in result.notes] == [62]
    dumped = result.model_dump(mode="json")
    assert "overlay" not in dumped
    assert dumped["events"][1]["kind"] == "barline"
    assert dumped["warnings"][0]["kind"] == "low_confidence"
