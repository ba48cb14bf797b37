"""Tablature recognition.

Each of the six strings is read with one recognizer call on a horizontal
strip around the string line. The line itself is erased first so digits
sitting on it are not fused with it, and short strips are enlarged with
nearest-neighbour scaling before recognition.
"""

import logging
import math
import re

import cv2
import numpy as np

from guitar_score_ocr.models.core_models import NoteEvent, RecognizedWord
from guitar_score_ocr.music_theory import MAX_FRET, STRING_TUNINGS, tab_to_midi
from guitar_score_ocr.recognizer import PageSegMode, TextRecognizer, recognize_text

logger = logging.getLogger(__name__)

FRET_WHITELIST = "0123456789 -|"
MIN_STRIP_HEIGHT = 80
FALLBACK_CONFIDENCE = 50.0
INK_THRESHOLD = 128

FRET_PATTERN = re.compile(r"^\d{1,2}$")
FRET_TOKEN_PATTERN = re.compile(r"\d{1,2}")
CONFUSIONS = str.maketrans("oOlIzZsS", "00112255")


def strip_bounds(
    string_lines: list[float], string_index: int, image_height: int
) -> tuple[int, int]:
    """Rows of the strip read for one string.

    The strip runs from midway to the previous line to midway to the next
    one; the outer strings extend half a line gap beyond their line.

    Args:
        string_lines: Six line positions, top (high E) first.
        string_index: String to crop (0-5).
        image_height: Height of the page, used for clamping.

    Returns:
        (top, bottom) rows, bottom exclusive.
    """
    spacing = (string_lines[-1] - string_lines[0]) / (len(string_lines) - 1)
    line_y = string_lines[string_index]
    if string_index == 0:
        top = max(0.0, line_y - spacing * 0.5)
    else:
        top = (string_lines[string_index - 1] + line_y) / 2
    if string_index == len(string_lines) - 1:
        bottom = min(float(image_height), line_y + spacing * 0.5)
    else:
        bottom = (line_y + string_lines[string_index + 1]) / 2

    top_row = int(math.floor(top))
    return top_row, min(image_height, top_row + int(math.ceil(bottom - top)))


def remove_string_line(strip: np.ndarray, line_y: float) -> np.ndarray:
    """Erase the string line from a strip, keeping digit strokes that cross it.

    A dark pixel within one row of the line is set to white only when the
    pixels two rows above and two rows below it are both white.

    Args:
        strip: Greyscale strip (dark ink).
        line_y: Line position relative to the strip top.

    Returns:
        A cleaned copy of the strip.
    """
    cleaned = strip.copy()
    height = strip.shape[0]
    ink = strip < INK_THRESHOLD
    center = int(round(line_y))
    for row in range(center - 1, center + 2):
        if not 0 <= row < height:
            continue
        above = ink[row - 2] if row - 2 >= 0 else np.zeros_like(ink[row])
        below = ink[row + 2] if row + 2 < height else np.zeros_like(ink[row])
        erase = ink[row] & ~above & ~below
        cleaned[row, erase] = 255
    return cleaned


def upscale_strip(strip: np.ndarray, min_height: int = MIN_STRIP_HEIGHT) -> tuple[np.ndarray, int]:
    """Enlarge a strip by an integer factor until it is ``min_height`` tall.

    Returns:
        Tuple of (image, factor); factor is 1 when no scaling was needed.
    """
    height, width = strip.shape[:2]
    if height == 0 or height >= min_height:
        return strip, 1
    factor = int(math.ceil(min_height / height))
    scaled = cv2.resize(
        strip, (width * factor, height * factor), interpolation=cv2.INTER_NEAREST
    )
    return scaled, factor


def normalize_fret_text(text: str) -> str:
    """Map letters commonly misread for digits (o→0, l→1, z→2, s→5)."""
    return text.strip().translate(CONFUSIONS)


def _fret_note(string_index: int, fret: int, confidence: float, x_center: float) -> NoteEvent:
    return NoteEvent(
        midi=tab_to_midi(string_index, fret),
        source_string=string_index,
        fret=fret,
        confidence=min(100.0, max(0.0, confidence)),
        x_center=x_center,
    )


def parse_fret_words(
    words: list[RecognizedWord],
    string_index: int,
    scale: float = 1.0,
    default_confidence: float = 0.0,
) -> list[NoteEvent]:
    """Turn recognized words of one strip into tab notes.

    Args:
        words: Words returned for the strip.
        string_index: String the strip belongs to.
        scale: Upscaling factor applied to the strip; x positions are mapped back.
        default_confidence: Used when a word has no confidence of its own.

    Returns:
        One note per word that reads as a fret number 0-24.
    """
    notes = []
    for word in words:
        text = normalize_fret_text(word.text)
        if not FRET_PATTERN.match(text):
            continue
        fret = int(text)
        if fret > MAX_FRET:
            continue
        notes.append(
            _fret_note(
                string_index,
                fret,
                word.confidence or default_confidence,
                word.center_x / scale,
            )
        )
    return notes


def parse_fret_text(
    text: str, string_index: int, width: int, confidence: float = FALLBACK_CONFIDENCE
) -> list[NoteEvent]:
    """Read fret numbers from plain text when no word boxes are available.

    Each token's x position is estimated from its offset in the text,
    spread proportionally over the strip width.
    """
    cleaned = normalize_fret_text(text).replace("|", " ")
    text_length = len(cleaned) or 1
    notes = []
    for match in FRET_TOKEN_PATTERN.finditer(cleaned):
        fret = int(match.group(0))
        if fret > MAX_FRET:
            continue
        notes.append(
            _fret_note(
                string_index,
                fret,
                confidence or FALLBACK_CONFIDENCE,
                match.start() / text_length * width,
            )
        )
    return notes


class TabRecognizer:
    """Reads fret numbers from a six-line tab system.

    Attributes:
        recognizer: Text recognizer configured per strip.
    """

    def __init__(self, recognizer: TextRecognizer):
        self.recognizer = recognizer

    def read_string(
        self, image: np.ndarray, string_lines: list[float], string_index: int
    ) -> list[NoteEvent]:
        """Recognize the fret numbers on a single string."""
        top, bottom = strip_bounds(string_lines, string_index, image.shape[0])
        if bottom <= top:
            return []

        strip = remove_string_line(image[top:bottom], string_lines[string_index] - top)
        ocr_image, factor = upscale_strip(strip)
        output = recognize_text(
            self.recognizer, ocr_image, PageSegMode.SINGLE_LINE, FRET_WHITELIST
        )
        if output.words:
            return parse_fret_words(
                output.words, string_index, factor, output.confidence
            )
        return parse_fret_text(
            output.text, string_index, image.shape[1], output.confidence
        )

    def recognize(
        self, image: np.ndarray, string_lines: list[float], start_index: int = 0
    ) -> list[NoteEvent]:
        """Recognize every string of a tab system.

        Args:
            image: Greyscale page (dark ink), not binarized.
            string_lines: Six line positions, high E first.
            start_index: Index given to the first emitted note.

        Returns:
            Notes sorted by x then string, indexed from ``start_index``.

        Raises:
            RecognizerError: If a recognizer call fails.
        """
        if len(string_lines) != len(STRING_TUNINGS):
            raise ValueError(f"Tab system needs 6 lines, got {len(string_lines)}")

        notes = []
        for string_index in range(len(STRING_TUNINGS)):
            string_notes = self.read_string(image, string_lines, string_index)
            logger.debug(f"String {string_index}: {len(string_notes)} frets")
            notes.extend(string_notes)

        notes.sort(key=lambda note: (note.x_center, note.source_string))
        return [
            note.model_copy(update={"index": start_index + offset})
            for offset, note in enumerate(notes)
        ]
