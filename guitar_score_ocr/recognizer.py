"""Text recognizer adapter.

The recognition stages only need three things from a text engine:
``set_parameters``, ``recognize`` and ``terminate``. ``TesseractRecognizer``
provides them on top of pytesseract, and ``RecognizerPool`` owns the
recognizer handles used during one recognition call.
"""

import logging
import shutil
from collections.abc import Callable
from enum import IntEnum
from pathlib import Path
from typing import Protocol

import numpy as np
import pytesseract
from PIL import Image
from pytesseract import Output

from guitar_score_ocr.errors import RecognizerError, ScoreOCRError
from guitar_score_ocr.models.core_models import BoundingBox, RecognizedWord
from guitar_score_ocr.models.pipeline_models import RecognizerOutput

logger = logging.getLogger(__name__)

TAB_LANGUAGE = "eng"
HEADER_LANGUAGE = "chi_tra+eng"
JIANPU_LANGUAGE = "chi_sim+eng"


class PageSegMode(IntEnum):
    """Tesseract page segmentation modes used by the recognizers."""

    SINGLE_BLOCK = 6
    SINGLE_LINE = 7
    SINGLE_WORD = 8


class TextRecognizer(Protocol):
    """Interface of a text recognition engine handle."""

    language: str

    def set_parameters(
        self, psm: PageSegMode | None = None, whitelist: str | None = None
    ) -> None: ...

    def recognize(self, image: np.ndarray) -> RecognizerOutput: ...

    def terminate(self) -> None: ...


RecognizerFactory = Callable[[str], TextRecognizer]


def resolve_tesseract_cmd(user_value: str | Path | None = None) -> Path:
    """Return the path to the Tesseract executable.

    Raises:
        RecognizerError: If no executable can be found.
    """
    if user_value is not None:
        path = Path(user_value)
        if path.exists():
            return path
        raise RecognizerError(f"Specified tesseract executable not found: {path}")

    from_path = shutil.which("tesseract")
    if from_path:
        return Path(from_path)
    raise RecognizerError("Could not locate the tesseract executable")


def _build_config(psm: PageSegMode, whitelist: str | None) -> str:
    parts = [f"--psm {int(psm)}"]
    if whitelist:
        # Spaces always separate words; tesseract rejects them in the whitelist
        chars = "".join(ch for ch in whitelist if not ch.isspace())
        parts.append(f"-c tessedit_char_whitelist={chars}")
    return " ".join(parts)


def words_from_data(data: dict) -> tuple[list[RecognizedWord], str]:
    """Convert pytesseract ``image_to_data`` output into words and text.

    Args:
        data: Dict produced with ``output_type=Output.DICT``.

    Returns:
        Tuple of (words, text) where text has one line per tesseract line.
    """
    words = []
    lines: dict[tuple[int, int, int], list[str]] = {}
    for idx in range(len(data.get("text", []))):
        raw_text = str(data["text"][idx]).strip()
        if not raw_text:
            continue
        try:
            conf = float(data["conf"][idx])
        except (KeyError, ValueError):
            conf = -1.0
        left = int(data["left"][idx])
        top = int(data["top"][idx])
        words.append(
            RecognizedWord(
                text=raw_text,
                bbox=BoundingBox(
                    x0=left,
                    y0=top,
                    x1=left + int(data["width"][idx]),
                    y1=top + int(data["height"][idx]),
                ),
                confidence=max(0.0, conf),
            )
        )
        line_key = tuple(
            int(data[key][idx]) if key in data else 0
            for key in ("block_num", "par_num", "line_num")
        )
        lines.setdefault(line_key, []).append(raw_text)

    text = "\n".join(" ".join(parts) for parts in lines.values())
    return words, text


class TesseractRecognizer:
    """Text recognizer backed by the Tesseract engine through pytesseract.

    Attributes:
        language: Tesseract language string such as ``"chi_sim+eng"``.
        psm: Current page segmentation mode.
        whitelist: Current character whitelist, or None for all characters.
    """

    def __init__(self, language: str = TAB_LANGUAGE, tesseract_cmd: str | Path | None = None):
        self.language = language
        self.psm = PageSegMode.SINGLE_BLOCK
        self.whitelist: str | None = None
        pytesseract.pytesseract.tesseract_cmd = str(resolve_tesseract_cmd(tesseract_cmd))
        self._closed = False

    def set_parameters(
        self, psm: PageSegMode | None = None, whitelist: str | None = None
    ) -> None:
        if psm is not None:
            self.psm = psm
        self.whitelist = whitelist

    def recognize(self, image: np.ndarray) -> RecognizerOutput:
        """Run OCR on a greyscale or RGB image.

        Raises:
            RecognizerError: If tesseract fails or the handle is closed.
        """
        if self._closed:
            raise RecognizerError("Recognizer has been terminated")
        config = _build_config(self.psm, self.whitelist)
        try:
            data = pytesseract.image_to_data(
                Image.fromarray(image),
                lang=self.language,
                config=config,
                output_type=Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            raise RecognizerError(f"Tesseract failed: {str(e)}") from e

        words, text = words_from_data(data)
        confidences = [word.confidence for word in words if word.confidence > 0]
        confidence = float(np.mean(confidences)) if confidences else 0.0
        return RecognizerOutput(text=text, confidence=confidence, words=words)

    def terminate(self) -> None:
        self._closed = True


def recognize_text(
    recognizer: TextRecognizer,
    image: np.ndarray,
    psm: PageSegMode,
    whitelist: str | None = None,
) -> RecognizerOutput:
    """Configure a recognizer and run it on one image.

    Any failure of the engine is reported as a RecognizerError.
    """
    try:
        recognizer.set_parameters(psm=psm, whitelist=whitelist)
        return recognizer.recognize(image)
    except ScoreOCRError:
        raise
    except Exception as e:
        raise RecognizerError(f"Recognizer failed: {str(e)}") from e


class RecognizerPool:
    """Lazily created recognizers, one per language, closed together.

    Use as a context manager so every handle is terminated on exit,
    including on errors and cancellation.
    """

    def __init__(
        self,
        factory: RecognizerFactory | None = None,
        tesseract_cmd: str | Path | None = None,
    ):
        self._factory = factory or (
            lambda language: TesseractRecognizer(language, tesseract_cmd)
        )
        self._recognizers: dict[str, TextRecognizer] = {}

    def get(self, language: str) -> TextRecognizer:
        """Return the recognizer for a language, creating it on first use.

        Raises:
            RecognizerError: If the recognizer cannot be created.
        """
        if language not in self._recognizers:
            logger.debug(f"Creating recognizer for {language}")
            try:
                self._recognizers[language] = self._factory(language)
            except ScoreOCRError:
                raise
            except Exception as e:
                raise RecognizerError(
                    f"Cannot create recognizer for {language}: {str(e)}"
                ) from e
        return self._recognizers[language]

    def close(self) -> None:
        for language, recognizer in self._recognizers.items():
            try:
                recognizer.terminate()
            except Exception as e:
                logger.warning(f"Error terminating {language} recognizer: {str(e)}")
        self._recognizers.clear()

    def __enter__(self) -> "RecognizerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
