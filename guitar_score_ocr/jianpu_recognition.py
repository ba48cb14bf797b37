"""Jianpu (numbered notation) recognition.

One recognizer call per text row returns word boxes. Each character of a
word is read as a note (1-7), rest (0), tie (-) or barline (|). Octave
dots and duration underlines are then measured on the page around each
character's box.
"""

import logging

import cv2
import numpy as np

from guitar_score_ocr.models.core_models import (
    CHORD_PATTERN,
    Accidental,
    Band,
    BarlineEvent,
    BoundingBox,
    Duration,
    NoteEvent,
    RecognizedWord,
    RestEvent,
    ScaleType,
    TieEvent,
)
from guitar_score_ocr.music_theory import jianpu_to_midi
from guitar_score_ocr.recognizer import PageSegMode, TextRecognizer, recognize_text

logger = logging.getLogger(__name__)

JIANPU_WHITELIST = "0123456789-|.·()[]#b♯♭"
ROW_QUANTUM = 30
INK_THRESHOLD = 128
MAX_OCTAVE_DOTS = 2
CHORD_DISTANCE_FACTOR = 1.5

SHARP_CHARS = {"#", "♯"}
FLAT_CHARS = {"b", "♭"}

UNDERLINE_DURATIONS = {
    0: Duration.QUARTER,
    1: Duration.EIGHTH,
    2: Duration.SIXTEENTH,
}


def is_chord_symbol(text: str) -> bool:
    """Whether a word reads as a chord name such as ``Am7`` or ``G/B``."""
    return bool(CHORD_PATTERN.match(text.strip()))


def duration_from_underlines(count: int) -> Duration:
    """Duration given by the number of underlines below a digit."""
    return UNDERLINE_DURATIONS.get(count, Duration.THIRTY_SECOND)


def _crop(binary: np.ndarray, x: float, y: float, w: float, h: float) -> np.ndarray:
    height, width = binary.shape
    x0 = max(0, int(np.floor(x)))
    x1 = min(width, int(np.ceil(x + w)))
    y0 = max(0, int(np.floor(y)))
    y1 = min(height, int(np.ceil(y + h)))
    if x1 <= x0 or y1 <= y0:
        return np.zeros((0, 0), dtype=binary.dtype)
    return binary[y0:y1, x0:x1]


def count_dots(region: np.ndarray, char_height: float) -> int:
    """Count dot-shaped ink blobs in a region.

    A blob is a dot when its area is between max(2, 4%) and 16% of the
    squared character height and its aspect ratio is between 0.3 and 3.
    """
    if region.size == 0:
        return 0
    ink = (region < INK_THRESHOLD).astype(np.uint8)
    count, _, stats, _ = cv2.connectedComponentsWithStats(ink, connectivity=4)
    min_area = max(2.0, 0.04 * char_height**2)
    max_area = 0.16 * char_height**2
    dots = 0
    for label in range(1, count):
        area = stats[label, cv2.CC_STAT_AREA]
        aspect = stats[label, cv2.CC_STAT_WIDTH] / stats[label, cv2.CC_STAT_HEIGHT]
        if min_area <= area <= max_area and 0.3 <= aspect <= 3.0:
            dots += 1
    return dots


def count_octave_dots(binary: np.ndarray, box: BoundingBox) -> int:
    """Octave offset marked by dots above (positive) or below (negative) a digit.

    Dots below are searched from half a character height under the digit
    so underlines are not mistaken for dots. The offset is capped at 2.

    Args:
        binary: Binarized page (ink < 128).
        box: Character box in page coordinates.
    """
    char_height = box.height
    left = box.center_x - char_height / 2
    above = count_dots(
        _crop(binary, left, box.y0 - char_height, char_height, char_height), char_height
    )
    if above > 0:
        return min(above, MAX_OCTAVE_DOTS)
    below = count_dots(
        _crop(binary, left, box.y1 + 0.5 * char_height, char_height, 0.8 * char_height),
        char_height,
    )
    return -min(below, MAX_OCTAVE_DOTS)


def count_underlines(binary: np.ndarray, box: BoundingBox) -> int:
    """Count stacked underlines below a digit.

    Rows from just under the box down to 1.2 character heights are scanned
    over the box widened by 0.3 character widths on each side. A row more
    than half ink is an underline when it is at least 3 px below the last
    one counted.
    """
    height, width = binary.shape
    char_width = box.width
    x0 = max(0, int(box.x0 - 0.3 * char_width))
    x1 = min(width, int(np.ceil(box.x1 + 0.3 * char_width)))
    y_start = int(box.y1) + 1
    y_end = min(height, int(np.ceil(box.y1 + 1.2 * box.height)))
    if x1 <= x0 or y_end <= y_start:
        return 0

    ratios = (binary[y_start:y_end, x0:x1] < INK_THRESHOLD).mean(axis=1)
    count = 0
    last_row = None
    for offset, ratio in enumerate(ratios):
        row = y_start + offset
        if ratio > 0.5 and (last_row is None or row - last_row >= 3):
            count += 1
            last_row = row
    return count


def sort_words(words: list[RecognizedWord]) -> list[RecognizedWord]:
    """Reading order: rows quantized to 30 px, then left to right."""
    return sorted(words, key=lambda w: (int(w.center_y // ROW_QUANTUM), w.center_x))


def _char_box(word: RecognizedWord, position: int) -> BoundingBox:
    """Box of one character, splitting the word width evenly."""
    char_width = word.char_width
    x0 = word.bbox.x0 + char_width * position
    return BoundingBox(x0=x0, y0=word.bbox.y0, x1=x0 + char_width, y1=word.bbox.y1)


def _nearest_chord(
    chords: list[RecognizedWord], box: BoundingBox, char_width: float
) -> str | None:
    for chord in chords:
        if chord.center_y < box.y0 and abs(chord.center_x - box.center_x) < (
            CHORD_DISTANCE_FACTOR * char_width
        ):
            return chord.text.strip()
    return None


def parse_jianpu_words(
    words: list[RecognizedWord],
    binary: np.ndarray | None = None,
    key: str = "C",
    scale_type: ScaleType = ScaleType.MAJOR,
    detect_octave_dots: bool = True,
    detect_duration_lines: bool = True,
    start_index: int = 0,
    default_confidence: float = 0.0,
) -> list[NoteEvent | RestEvent | TieEvent | BarlineEvent]:
    """Convert recognized jianpu words into events.

    Args:
        words: Words in page coordinates.
        binary: Binarized page for dot and underline measurement; both are
            skipped when None.
        key: Pitch of degree 1 (``"C"``, ``"F#"``, ``"Bb"``).
        scale_type: Scale mapping degrees to semitones.
        detect_octave_dots: Whether to look for octave dots.
        detect_duration_lines: Whether to count underlines.
        start_index: Index given to the first event.
        default_confidence: Used for words without a confidence.

    Returns:
        Events in reading order with consecutive indices.
    """
    chords = [word for word in words if is_chord_symbol(word.text)]
    events = []
    for word in sort_words(words):
        text = word.text.strip()
        if is_chord_symbol(text):
            continue
        confidence = min(100.0, word.confidence or default_confidence)

        position = 0
        while position < len(text):
            char = text[position]
            box = _char_box(word, position)
            position += 1

            if char in "1234567":
                accidental = None
                if position < len(text) and text[position] in SHARP_CHARS:
                    accidental = Accidental.SHARP
                    position += 1
                elif position < len(text) and text[position] in FLAT_CHARS:
                    accidental = Accidental.FLAT
                    position += 1

                octave = 0
                underlines = 0
                if binary is not None and detect_octave_dots:
                    octave = count_octave_dots(binary, box)
                if binary is not None and detect_duration_lines:
                    underlines = count_underlines(binary, box)

                midi = jianpu_to_midi(
                    int(char),
                    key,
                    scale_type,
                    octave,
                    accidental.semitones if accidental else 0,
                )
                if not 0 <= midi <= 127:
                    logger.debug(f"Skipping jianpu {char} at x={box.center_x}: midi {midi}")
                    continue
                events.append(
                    NoteEvent(
                        midi=midi,
                        duration=duration_from_underlines(underlines),
                        accidental=accidental,
                        chord_symbol=_nearest_chord(chords, box, word.char_width),
                        confidence=confidence,
                        x_center=box.center_x,
                    )
                )
            elif char == "0":
                underlines = 0
                if binary is not None and detect_duration_lines:
                    underlines = count_underlines(binary, box)
                events.append(
                    RestEvent(
                        duration=duration_from_underlines(underlines),
                        confidence=confidence,
                        x_center=box.center_x,
                    )
                )
            elif char == "-":
                events.append(TieEvent(x_center=box.center_x))
            elif char == "|":
                events.append(BarlineEvent(x_center=box.center_x))

    return [
        event.model_copy(update={"index": start_index + offset})
        for offset, event in enumerate(events)
    ]


def _to_page(word: RecognizedWord, offset_y: int) -> RecognizedWord:
    bbox = word.bbox
    return word.model_copy(
        update={
            "bbox": BoundingBox(
                x0=bbox.x0, y0=bbox.y0 + offset_y, x1=bbox.x1, y1=bbox.y1 + offset_y
            )
        }
    )


class JianpuRecognizer:
    """Reads one jianpu row.

    Attributes:
        recognizer: Text recognizer for the jianpu languages.
        key: Pitch of degree 1.
        scale_type: Scale mapping degrees to semitones.
        detect_octave_dots: Whether to look for octave dots.
        detect_duration_lines: Whether to count underlines.
    """

    def __init__(
        self,
        recognizer: TextRecognizer,
        key: str = "C",
        scale_type: ScaleType = ScaleType.MAJOR,
        detect_octave_dots: bool = True,
        detect_duration_lines: bool = True,
    ):
        self.recognizer = recognizer
        self.key = key
        self.scale_type = scale_type
        self.detect_octave_dots = detect_octave_dots
        self.detect_duration_lines = detect_duration_lines

    def recognize(
        self, binary: np.ndarray, band: Band, start_index: int = 0
    ) -> list[NoteEvent | RestEvent | TieEvent | BarlineEvent]:
        """Recognize the row covered by ``band``.

        Args:
            binary: Binarized page (ink < 128).
            band: Rows of the jianpu row.
            start_index: Index given to the first event.

        Returns:
            Events in reading order.

        Raises:
            RecognizerError: If the recognizer call fails.
        """
        region = binary[band.top : band.bottom]
        if region.size == 0:
            return []
        output = recognize_text(
            self.recognizer, region, PageSegMode.SINGLE_BLOCK, JIANPU_WHITELIST
        )
        words = [_to_page(word, band.top) for word in output.words]
        logger.debug(f"Jianpu row {band.top}-{band.bottom}: {len(words)} words")
        return parse_jianpu_words(
            words,
            binary,
            key=self.key,
            scale_type=self.scale_type,
            detect_octave_dots=self.detect_octave_dots,
            detect_duration_lines=self.detect_duration_lines,
            start_index=start_index,
            default_confidence=output.confidence,
        )
