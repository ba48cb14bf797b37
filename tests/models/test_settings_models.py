import pytest
from pydantic import ValidationError

from guitar_score_ocr.models import (
    BinarizeMethod,
    Clef,
    PreprocessParams,
    RecognizeOptions,
    ScaleType,
    ScoreType,
)


def test_recognize_options_defaults():
    options = RecognizeOptions()
    assert options.type is ScoreType.AUTO
    assert options.key == "C"
    assert options.scale_type is ScaleType.MAJOR
    assert options.clef is Clef.TREBLE
    assert options.try_jianpu
    assert options.min_confidence_warning == 30.0
    assert options.preprocess.do_morph_open is None


@pytest.mark.parametrize("key", ["C", "F#", "Bb", "G"])
def test_valid_keys(key):
    assert RecognizeOptions(key=key).key == key


@pytest.mark.parametrize("key", ["H", "c", "C##", "Am"])
def test_invalid_keys(key):
    with pytest.raises(ValidationError):
        RecognizeOptions(key=key)


def test_explicit_fields_are_tracked():
    assert "key" not in RecognizeOptions().model_fields_set
    assert "key" in RecognizeOptions(key="C").model_fields_set


@pytest.mark.parametrize("field, value", [("contrast", 0.0), ("max_dim", 50), ("blur_radius", 0)])
def test_preprocess_params_bounds(field, value):
    with pytest.raises(ValidationError):
        PreprocessParams(**{field: value})


def test_disabled_preprocessing():
    params = PreprocessParams.disabled()
    assert not params.do_scale
    assert not params.do_deskew
    assert params.binarize_method is BinarizeMethod.OTSU
    assert params.contrast == 1.0
