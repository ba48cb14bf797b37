import numpy as np
import pytesseract
import pytest

from helpers import FakeFactory, FakeRecognizer

from guitar_score_ocr.errors import RecognizerError
from guitar_score_ocr.recognizer import (
    PageSegMode,
    RecognizerPool,
    TesseractRecognizer,
    _build_config,
    recognize_text,
    resolve_tesseract_cmd,
    words_from_data,
)

TESSERACT_DATA = {
    "text": ["", "3", " 12 ", "5"],
    "conf": ["-1", "91.5", "80", "-1"],
    "left": [0, 10, 40, 70],
    "top": [0, 2, 3, 30],
    "width": [100, 8, 14, 8],
    "height": [50, 12, 12, 12],
    "block_num": [1, 1, 1, 1],
    "par_num": [1, 1, 1, 1],
    "line_num": [0, 1, 1, 2],
}


@pytest.fixture
def fake_tesseract(tmp_path, monkeypatch):
    executable = tmp_path / "tesseract"
    executable.write_text("")
    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", "tesseract")
    return executable


def test_build_config():
    assert _build_config(PageSegMode.SINGLE_BLOCK, None) == "--psm 6"
    assert (
        _build_config(PageSegMode.SINGLE_LINE, "0123456789 -|")
        == "--psm 7 -c tessedit_char_whitelist=0123456789-|"
    )


def test_words_from_data():
    words, text = words_from_data(TESSERACT_DATA)
    assert [word.text for word in words] == ["3", "12", "5"]
    assert words[1].bbox.x1 == 54
    assert words[1].confidence == 80.0
    assert words[2].confidence == 0.0
    assert text == "3 12\n5"


def test_resolve_tesseract_cmd(fake_tesseract, tmp_path):
    assert resolve_tesseract_cmd(fake_tesseract) == fake_tesseract
    with pytest.raises(RecognizerError):
        resolve_tesseract_cmd(tmp_path / "missing")


def test_tesseract_recognizer(fake_tesseract, monkeypatch):
    seen = {}

    def image_to_data(image, lang, config, output_type):
        seen.update(lang=lang, config=config, size=image.size)
        return TESSERACT_DATA

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    recognizer = TesseractRecognizer("eng", fake_tesseract)
    recognizer.set_parameters(psm=PageSegMode.SINGLE_WORD, whitelist="0123")

    output = recognizer.recognize(np.full((20, 30), 255, dtype=np.uint8))

    assert seen == {
        "lang": "eng",
        "config": "--psm 8 -c tessedit_char_whitelist=0123",
        "size": (30, 20),
    }
    assert output.text == "3 12\n5"
    assert output.confidence == pytest.approx((91.5 + 80) / 2)
    assert len(output.words) == 3


def test_tesseract_failure_is_wrapped(fake_tesseract, monkeypatch):
    def image_to_data(*args, **kwargs):
        raise pytesseract.TesseractError(1, "bad language")

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    recognizer = TesseractRecognizer("xyz", fake_tesseract)
    with pytest.raises(RecognizerError):
        recognizer.recognize(np.zeros((10, 10), dtype=np.uint8))


def test_terminated_recognizer_refuses_work(fake_tesseract):
    recognizer = TesseractRecognizer("eng", fake_tesseract)
    recognizer.terminate()
    with pytest.raises(RecognizerError):
        recognizer.recognize(np.zeros((10, 10), dtype=np.uint8))


def test_recognize_text_configures_and_wraps():
    recognizer = FakeRecognizer()
    recognize_text(recognizer, np.zeros((5, 5), dtype=np.uint8), PageSegMode.SINGLE_LINE, "01")
    assert recognizer.calls == [(PageSegMode.SINGLE_LINE, "01", (5, 5))]

    with pytest.raises(RecognizerError):
        recognize_text(
            FakeRecognizer(fail=True), np.zeros((5, 5), dtype=np.uint8), PageSegMode.SINGLE_LINE
        )


def test_pool_creates_lazily_and_closes_all():
    factory = FakeFactory()
    with RecognizerPool(factory) as pool:
        assert factory.created == {}
        first = pool.get("eng")
        assert pool.get("eng") is first
        pool.get("chi_sim+eng")
    assert set(factory.created) == {"eng", "chi_sim+eng"}
    assert all(recognizer.terminated for recognizer in factory.created.values())


def test_pool_closes_on_error():
    factory = FakeFactory()
    with pytest.raises(RuntimeError):
        with RecognizerPool(factory) as pool:
            pool.get("eng")
            raise RuntimeError("boom")
    assert factory.created["eng"].terminated


def test_pool_wraps_factory_failure():
    def broken(language):
        raise OSError("no tessdata")

    with pytest.raises(RecognizerError):
        RecognizerPool(broken).get("eng")
