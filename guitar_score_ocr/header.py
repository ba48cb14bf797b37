"""Header metadata extraction.

Reads the region above the first system with the text recognizer and
parses title, key, tempo, time signature, capo, composer and lyricist
out of the returned text.
"""

import logging
import re

import numpy as np

from guitar_score_ocr.models.core_models import Band, System
from guitar_score_ocr.models.pipeline_models import HeaderMetadata
from guitar_score_ocr.recognizer import PageSegMode, TextRecognizer, recognize_text

logger = logging.getLogger(__name__)

HEADER_MARGIN = 5
MIN_HEADER_HEIGHT = 20
FALLBACK_HEADER_FRACTION = 0.25

TEMPO_PATTERNS = [
    re.compile(r"[♩JjＪ]\s*[=＝]\s*(\d{2,3})"),
    re.compile(r"[Tt]empo\s*[=:：]\s*(\d{2,3})"),
]
KEY_PATTERNS = [
    re.compile(r"[Kk]ey\s*[=:：]\s*([A-Ga-g][#♯b♭]?\s*(?:m(?:in(?:or)?)?|[Mm]aj(?:or)?)?)"),
    re.compile(r"1\s*[=＝]\s*([A-Ga-g][#♯b♭]?)"),
    re.compile(r"\b([A-G][#♯b♭]?\s*(?:Major|Minor|m(?:aj)?))\b"),
]
TIME_SIGNATURE_PATTERN = re.compile(r"\b(\d)\s*[/／]\s*(\d)\b")
CAPO_PATTERN = re.compile(r"[Cc]apo\s*[=:：]?\s*(\d{1,2})")
CREDIT_PATTERNS = [
    (re.compile(r"作曲\s*[：:]\s*(.+)"), "composer"),
    (re.compile(r"作詞\s*[：:]\s*(.+)"), "lyricist"),
    (re.compile(r"詞曲\s*[・·：:]\s*(.+)"), "composer"),
    (re.compile(r"[Cc]omposer\s*[：:]\s*(.+)"), "composer"),
    (re.compile(r"(?<![作詞])曲\s*[：:]\s*(.+)"), "composer"),
    (re.compile(r"(?<!作)詞\s*[：:]\s*(.+)"), "lyricist"),
]
METADATA_LINE_PATTERNS = [
    re.compile(r"^[Kk]ey\s*[=:：]"),
    re.compile(r"^[Cc]apo\s*[=:：]?\s*\d"),
    re.compile(r"^[♩JjＪ]\s*[=＝]"),
    re.compile(r"^[Tt]empo"),
    re.compile(r"^作[曲詞]"),
    re.compile(r"^詞曲"),
    re.compile(r"^曲\s*[：:]"),
    re.compile(r"^詞\s*[：:]"),
    re.compile(r"^\d\s*[/／]\s*\d$"),
    re.compile(r"^1\s*[=＝]"),
    re.compile(r"^[Cc]omposer"),
]
NUMERIC_LINE_PATTERN = re.compile(r"^[\d\s\-=:.,]+$")


def normalize_key(key: str) -> str:
    """Normalize a key string such as ``"a minor"`` or ``"F♯ Major"``.

    Whitespace is removed, ``♯``/``♭`` become ``#``/``b``, the root is
    upper-cased, minor is written ``m`` and major is dropped.
    """
    key = re.sub(r"\s+", "", key).replace("♯", "#").replace("♭", "b")
    if not key:
        return key
    key = key[0].upper() + key[1:]
    key = re.sub(r"minor", "m", key, flags=re.IGNORECASE)
    key = re.sub(r"min", "m", key, flags=re.IGNORECASE)
    key = re.sub(r"major", "", key, flags=re.IGNORECASE)
    key = re.sub(r"maj", "", key, flags=re.IGNORECASE)
    return key


def _first_match(patterns: list[re.Pattern], text: str) -> re.Match | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match
    return None


def extract_title(lines: list[str]) -> str | None:
    """First line that is not metadata, not numeric and at least 2 chars long."""
    for line in lines:
        if any(pattern.search(line) for pattern in METADATA_LINE_PATTERNS):
            continue
        if len(line) < 2 or NUMERIC_LINE_PATTERN.match(line):
            continue
        return line
    return None


def parse_metadata(text: str) -> HeaderMetadata:
    """Parse header fields from recognized text.

    Each field takes the first match of its ordered pattern family.

    Args:
        text: Recognizer output for the header region.

    Returns:
        HeaderMetadata with every field found; missing fields stay None.
    """
    if not text or not text.strip():
        return HeaderMetadata()

    fields: dict = {}
    match = _first_match(TEMPO_PATTERNS, text)
    if match:
        fields["tempo"] = int(match.group(1))

    match = _first_match(KEY_PATTERNS, text)
    if match:
        fields["key"] = normalize_key(match.group(1))

    match = TIME_SIGNATURE_PATTERN.search(text)
    if match:
        fields["time_signature"] = f"{match.group(1)}/{match.group(2)}"

    match = CAPO_PATTERN.search(text)
    if match:
        fields["capo"] = int(match.group(1))

    for pattern, field in CREDIT_PATTERNS:
        if field in fields:
            continue
        match = pattern.search(text)
        if match:
            fields[field] = match.group(1).strip()

    lines = [line.strip() for line in text.split("\n") if line.strip()]
    fields["title"] = extract_title(lines)
    return HeaderMetadata(**fields)


def header_region(image_height: int, systems: list[System]) -> Band | None:
    """Rows above the first system, or the top quarter without systems.

    Returns:
        None when the region is shorter than 20 rows.
    """
    if systems:
        bottom = max(0, min(system.top for system in systems) - HEADER_MARGIN)
    else:
        bottom = int(image_height * FALLBACK_HEADER_FRACTION)
    if bottom < MIN_HEADER_HEIGHT:
        return None
    return Band(top=0, bottom=min(bottom, image_height))


def extract_header(
    gray: np.ndarray, systems: list[System], recognizer: TextRecognizer
) -> HeaderMetadata:
    """Recognize and parse the header region of a page.

    Args:
        gray: Greyscale page aligned with the detected systems.
        systems: Systems in document order (may be empty).
        recognizer: Recognizer for the header languages.

    Returns:
        Parsed metadata; empty when the region is too small.

    Raises:
        RecognizerError: If the recognizer fails.
    """
    region = header_region(gray.shape[0], systems)
    if region is None:
        logger.debug("Header region too small, skipping header")
        return HeaderMetadata()

    output = recognize_text(
        recognizer, gray[region.top : region.bottom], PageSegMode.SINGLE_BLOCK
    )
    metadata = parse_metadata(output.text)
    logger.debug(f"Header metadata: {metadata.model_dump(exclude={'raw_text'})}")
    return metadata.model_copy(update={"raw_text": output.text})
