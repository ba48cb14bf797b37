"""
Pipeline processing functions for guitar score recognition.

This module ties the stages together: loading, preprocessing, line and
system detection, header extraction and the per-system recognizers. It
converts stage exceptions into the ``error`` and ``warnings`` fields of a
``RecognitionResult`` and keeps one recognizer pool alive per call.
"""

import logging
import threading
from collections import Counter
from collections.abc import Callable
from functools import lru_cache

import numpy as np

from guitar_score_ocr.errors import (
    CancelledError,
    ErrorKind,
    ScoreOCRError,
    describe_error,
)
from guitar_score_ocr.header import extract_header
from guitar_score_ocr.image_loader import ImageSource, load_image
from guitar_score_ocr.image_processing import morphological_open, preprocess
from guitar_score_ocr.jianpu_recognition import JianpuRecognizer, is_chord_symbol
from guitar_score_ocr.line_detection import detect_line_groups
from guitar_score_ocr.models.core_models import (
    Band,
    BarlineEvent,
    NoteEvent,
    ScoreType,
    System,
    SystemType,
    Technique,
)
from guitar_score_ocr.models.pipeline_models import (
    HeaderMetadata,
    PreprocessResult,
    RecognitionResult,
    RecognitionWarning,
    SystemInfo,
)
from guitar_score_ocr.models.settings_models import RecognizeOptions
from guitar_score_ocr.music_theory import get_note_name, jianpu_key_from_header
from guitar_score_ocr.recognizer import (
    HEADER_LANGUAGE,
    JIANPU_LANGUAGE,
    TAB_LANGUAGE,
    PageSegMode,
    RecognizerFactory,
    RecognizerPool,
    TextRecognizer,
    recognize_text,
)
from guitar_score_ocr.staff_recognition import StaffRecognizer
from guitar_score_ocr.systems import detect_jianpu_rows, group_systems
from guitar_score_ocr.tab_recognition import TabRecognizer
from guitar_score_ocr.visualization import create_debug_overlay

logger = logging.getLogger(__name__)

CHORD_WHITELIST = "ABCDEFGm#b+/0123456789dimaugsusMaj7"
TECHNIQUE_WHITELIST = "HPSBhpsb"
MIN_CHORD_BAND_HEIGHT = 10
MIN_TECHNIQUE_BAND_HEIGHT = 5
PIANO_RANGE = (21, 108)

TECHNIQUE_CODES = {
    "H": Technique.HAMMER,
    "P": Technique.PULL,
    "S": Technique.SLIDE,
    "B": Technique.BEND,
}

AUTO_FALLBACK_ORDER = [ScoreType.TAB, ScoreType.STAFF, ScoreType.JIANPU]

# System types each requested notation reads, and how StaffTab is read
SYSTEM_FILTERS = {
    ScoreType.COMBINED: {SystemType.STAFF, SystemType.TAB, SystemType.STAFF_TAB},
    ScoreType.TAB: {SystemType.TAB, SystemType.STAFF_TAB},
    ScoreType.STAFF: {SystemType.STAFF, SystemType.STAFF_TAB},
    ScoreType.JIANPU: set(),
}

ProgressCallback = Callable[[str, float], None]


class ProgressReporter:
    """Progress sink with cooperative cancellation.

    The optional callback receives ``(phase, percent)`` at every
    checkpoint. ``cancel`` may be called from any thread; the pipeline
    checks the flag between stages and between systems.
    """

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.callback = callback
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def wrap(cls, progress: "ProgressReporter | ProgressCallback | None") -> "ProgressReporter":
        """Accept a reporter, a bare callback or None."""
        if isinstance(progress, ProgressReporter):
            return progress
        return cls(progress)

    def report(self, phase: str, percent: float) -> None:
        logger.debug(f"Progress {phase}: {percent:.0f}%")
        if self.callback is not None:
            self.callback(phase, percent)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self.cancelled:
            raise CancelledError()

    def silent(self) -> "ProgressReporter":
        """A reporter sharing this cancel flag that reports nothing."""
        return ProgressReporter(None, self._cancel_event)


def primary_type(systems: list[System], fallback: ScoreType = ScoreType.AUTO) -> ScoreType:
    """Notation type of a page.

    Combined when any StaffTab system is present or when both staff and
    tab systems are, else the majority type.

    Args:
        systems: Systems that were recognized.
        fallback: Returned when there are no systems.
    """
    if not systems:
        return fallback
    types = {system.type for system in systems}
    if SystemType.STAFF_TAB in types or {SystemType.STAFF, SystemType.TAB} <= types:
        return ScoreType.COMBINED
    counts = Counter(system.type for system in systems)
    majority = counts.most_common(1)[0][0]
    return ScoreType(majority.value)


def detect_chords_in_band(
    image: np.ndarray, band: Band, recognizer: TextRecognizer
) -> list[tuple[float, str]]:
    """Read chord symbols printed in a band.

    Returns:
        (x_center, chord) pairs; bands under 10 rows give no chords.
    """
    if band.height < MIN_CHORD_BAND_HEIGHT:
        return []
    output = recognize_text(
        recognizer, image[band.top : band.bottom], PageSegMode.SINGLE_LINE, CHORD_WHITELIST
    )
    return [
        (word.center_x, word.text.strip())
        for word in output.words
        if is_chord_symbol(word.text)
    ]


def detect_techniques_in_band(
    image: np.ndarray, band: Band, recognizer: TextRecognizer
) -> list[tuple[float, Technique]]:
    """Read H/P/S/B technique marks between a staff and its tab.

    Returns:
        (x_center, technique) pairs, one per recognized letter.
    """
    if band.height < MIN_TECHNIQUE_BAND_HEIGHT:
        return []
    output = recognize_text(
        recognizer,
        image[band.top : band.bottom],
        PageSegMode.SINGLE_LINE,
        TECHNIQUE_WHITELIST,
    )
    marks = []
    for word in output.words:
        text = word.text.strip()
        for position, char in enumerate(text):
            technique = TECHNIQUE_CODES.get(char.upper())
            if technique is not None:
                x_center = word.bbox.x0 + word.char_width * (position + 0.5)
                marks.append((x_center, technique))
    return marks


def attach_to_nearest(events: list, marks: list[tuple[float, object]], field: str) -> list:
    """Attach each mark to the note whose ``x_center`` is closest.

    Notes that already carry a value for ``field`` keep it.

    Args:
        events: Event list of one system.
        marks: (x, value) pairs.
        field: Note attribute to set, e.g. ``"chord_symbol"``.

    Returns:
        A new event list.
    """
    events = list(events)
    candidates = [
        position
        for position, event in enumerate(events)
        if isinstance(event, NoteEvent) and event.x_center is not None
    ]
    if not candidates:
        return events

    for x, value in marks:
        nearest = min(candidates, key=lambda position: abs(events[position].x_center - x))
        if getattr(events[nearest], field) is None:
            events[nearest] = events[nearest].model_copy(update={field: value})
    return events


def _warning(kind: ErrorKind, message: str | None = None) -> RecognitionWarning:
    return RecognitionWarning(kind=kind, message=message or describe_error(kind)[0])


def _failure(
    error: ScoreOCRError, score_type: ScoreType, warnings: list[RecognitionWarning]
) -> RecognitionResult:
    logger.error(f"Recognition failed: {str(error)}")
    return RecognitionResult(
        type=score_type,
        error=error.kind,
        cancelled=error.kind is ErrorKind.CANCELLED,
        warnings=warnings,
    )


def _event_confidence(events: list) -> float | None:
    values = [event.confidence for event in events if hasattr(event, "confidence")]
    return float(np.mean(values)) if values else None


class _SystemReader:
    """Per-call recognizer state shared by all systems."""

    def __init__(
        self,
        pre: PreprocessResult,
        options: RecognizeOptions,
        pool: RecognizerPool,
        score_type: ScoreType,
        jianpu_key: str,
        jianpu_binary: Callable[[], np.ndarray],
    ):
        self.pre = pre
        self.options = options
        self.pool = pool
        self.score_type = score_type
        self.jianpu_key = jianpu_key
        self.jianpu_binary = jianpu_binary

    def read(self, system: System) -> list:
        options = self.options
        read_staff = system.type is SystemType.STAFF or (
            system.type is SystemType.STAFF_TAB and self.score_type is ScoreType.STAFF
        )
        if system.type is SystemType.JIANPU:
            recognizer = JianpuRecognizer(
                self.pool.get(JIANPU_LANGUAGE),
                key=self.jianpu_key,
                scale_type=options.scale_type,
                detect_octave_dots=options.detect_octave_dots,
                detect_duration_lines=options.detect_duration_lines,
            )
            return recognizer.recognize(self.jianpu_binary(), system.band)
        if read_staff:
            recognizer = StaffRecognizer(options.clef, options.remove_staff_lines)
            return recognizer.recognize(
                self.pre.binary, system.staff_lines, spacing=system.staff_spacing
            )
        return TabRecognizer(self.pool.get(TAB_LANGUAGE)).recognize(
            self.pre.greyscale, system.tab_lines
        )

    def annotate(self, system: System, events: list) -> list:
        """Attach chord symbols and techniques read around a system."""
        if self.options.detect_chords and system.chord_band is not None:
            chords = detect_chords_in_band(
                self.pre.greyscale, system.chord_band, self.pool.get(TAB_LANGUAGE)
            )
            events = attach_to_nearest(events, chords, "chord_symbol")
        if system.type is SystemType.STAFF_TAB and system.technique_band is not None:
            techniques = detect_techniques_in_band(
                self.pre.greyscale, system.technique_band, self.pool.get(TAB_LANGUAGE)
            )
            events = attach_to_nearest(events, techniques, "technique")
        return events


def jianpu_binary_loader(
    pre: PreprocessResult, options: RecognizeOptions
) -> Callable[[], np.ndarray]:
    """Build a loader computing the binary used for jianpu rows once.

    The morphological open only runs on the first call, so pages without
    jianpu rows never pay for it.
    """

    @lru_cache(maxsize=1)
    def load() -> np.ndarray:
        if options.preprocess.do_morph_open is None:
            return morphological_open(pre.binary)
        return pre.binary

    return load


def _find_systems(
    pre: PreprocessResult,
    options: RecognizeOptions,
    score_type: ScoreType,
    jianpu_binary: Callable[[], np.ndarray],
) -> tuple[list[System], bool]:
    """Systems to read for a notation type and whether line groups were found."""
    if score_type is ScoreType.JIANPU:
        return detect_jianpu_rows(jianpu_binary()), False

    groups = detect_line_groups(pre.binary)
    systems = [
        system
        for system in group_systems(groups)
        if system.type in SYSTEM_FILTERS[score_type]
    ]
    if not systems and not groups and options.try_jianpu and score_type is ScoreType.COMBINED:
        logger.info("No line groups found, falling back to jianpu rows")
        return detect_jianpu_rows(jianpu_binary()), False
    return systems, bool(groups)


def _read_header(
    pre: PreprocessResult,
    systems: list[System],
    pool: RecognizerPool,
    warnings: list[RecognitionWarning],
) -> HeaderMetadata:
    try:
        return extract_header(pre.greyscale, systems, pool.get(HEADER_LANGUAGE))
    except ScoreOCRError as e:
        logger.warning(f"Header extraction failed: {str(e)}")
        warnings.append(_warning(e.kind, f"Header extraction failed: {str(e)}"))
        return HeaderMetadata()


def recognize_systems(
    pre: PreprocessResult,
    options: RecognizeOptions,
    pool: RecognizerPool,
    score_type: ScoreType = ScoreType.COMBINED,
    progress: ProgressReporter | None = None,
    header: HeaderMetadata | None = None,
    jianpu_binary: Callable[[], np.ndarray] | None = None,
) -> RecognitionResult:
    """Recognize a preprocessed page as one notation type.

    Systems are read top to bottom. A failing system is logged and
    reported in ``systems`` while the rest continue. A barline separates
    consecutive systems that produced events.

    Args:
        pre: Preprocessing result.
        options: Recognition options.
        pool: Recognizer pool owned by the caller.
        score_type: Combined, Tab, Staff or Jianpu.
        progress: Progress sink checked for cancellation between systems.
        header: Metadata already read for this page; skips header OCR.
        jianpu_binary: Shared loader from ``jianpu_binary_loader``.

    Returns:
        RecognitionResult with dense event indices. On cancellation the
        events read so far are returned with ``cancelled`` set.
    """
    reporter = progress or ProgressReporter()
    jianpu_binary = jianpu_binary or jianpu_binary_loader(pre, options)
    warnings: list[RecognitionWarning] = []
    systems, found_groups = _find_systems(pre, options, score_type, jianpu_binary)
    reporter.report("lines detected", 40)
    logger.debug(f"{len(systems)} systems for {score_type.value}")

    cancelled = reporter.cancelled
    metadata = header or HeaderMetadata()
    if header is None and options.detect_header and not cancelled:
        metadata = _read_header(pre, systems, pool, warnings)
    reporter.report("systems grouped", 60)

    inferred = list(metadata.inferred_defaults)
    jianpu_key = options.key
    if any(system.type is SystemType.JIANPU for system in systems):
        if "key" not in options.model_fields_set:
            header_key = jianpu_key_from_header(metadata.key) if metadata.key else None
            if header_key:
                jianpu_key = header_key
            else:
                inferred.append(f"key:{options.key}")
    reader = _SystemReader(pre, options, pool, score_type, jianpu_key, jianpu_binary)
    if "clef" not in options.model_fields_set and any(
        system.type is SystemType.STAFF
        or (system.type is SystemType.STAFF_TAB and score_type is ScoreType.STAFF)
        for system in systems
    ):
        inferred.append(f"clef:{options.clef.value}")
    metadata = metadata.model_copy(update={"inferred_defaults": inferred})

    events: list = []
    infos: list[SystemInfo] = []
    per_system: list[tuple[System, list]] = []
    for number, system in enumerate(systems):
        if cancelled or reporter.cancelled:
            logger.info(f"Cancelled before system {number + 1}/{len(systems)}")
            cancelled = True
            break
        reporter.report(
            f"system {number + 1}/{len(systems)}", 60 + 35 * number / len(systems)
        )
        try:
            system_events = reader.read(system)
        except Exception as e:
            kind = e.kind if isinstance(e, ScoreOCRError) else ErrorKind.RECOGNIZER_ERROR
            logger.exception(f"System {number} ({system.type.value}) failed: {str(e)}")
            infos.append(
                SystemInfo(type=system.type, top=system.top, bottom=system.bottom, error=kind)
            )
            continue

        try:
            system_events = reader.annotate(system, system_events)
        except Exception as e:
            logger.warning(f"Annotation of system {number} failed: {str(e)}")

        infos.append(
            SystemInfo(
                type=system.type,
                top=system.top,
                bottom=system.bottom,
                event_count=len(system_events),
                confidence=_event_confidence(system_events),
            )
        )
        per_system.append((system, system_events))
        if system_events and events:
            events.append(BarlineEvent())
        events.extend(system_events)

    events = [event.model_copy(update={"index": index}) for index, event in enumerate(events)]
    confidence = _event_confidence(events) or 0.0

    error = None
    if cancelled:
        error = ErrorKind.CANCELLED
    elif systems and all(info.error is not None for info in infos):
        error = ErrorKind.RECOGNIZER_ERROR
        events = []
        confidence = 0.0

    if not systems and not found_groups:
        warnings.append(_warning(ErrorKind.NO_LINES_DETECTED))
    elif error is None and not events:
        warnings.append(_warning(ErrorKind.NO_NOTES_DETECTED))
    if events and confidence < options.min_confidence_warning:
        warnings.append(
            _warning(
                ErrorKind.LOW_CONFIDENCE,
                f"Mean confidence {confidence:.0f} is below {options.min_confidence_warning:.0f}",
            )
        )
    low, high = PIANO_RANGE
    outside = [e for e in events if isinstance(e, NoteEvent) and not low <= e.midi <= high]
    if outside:
        names = ", ".join(f"{get_note_name(e.midi)} at {e.index}" for e in outside)
        warnings.append(
            _warning(
                ErrorKind.LOW_CONFIDENCE,
                f"Notes outside the piano range {low}-{high}: {names}",
            )
        )

    result_type = (
        primary_type(systems, score_type)
        if score_type is ScoreType.COMBINED
        else score_type
    )
    overlay = None
    if options.debug_overlay:
        overlay = create_debug_overlay(pre.greyscale, per_system)

    return RecognitionResult(
        type=result_type,
        events=events,
        metadata=metadata,
        confidence=min(100.0, confidence),
        system_count=len(systems),
        systems=infos,
        warnings=warnings,
        error=error,
        cancelled=cancelled,
        overlay=overlay,
    )


def _recognize_auto(
    pre: PreprocessResult,
    options: RecognizeOptions,
    pool: RecognizerPool,
    reporter: ProgressReporter,
) -> RecognitionResult:
    """Try Combined first, then every single notation, keeping the best.

    Fallback runs share the cancel flag but report no progress, so the
    checkpoints seen by the caller never go backwards.
    """
    jianpu_binary = jianpu_binary_loader(pre, options)
    combined = recognize_systems(
        pre, options, pool, ScoreType.COMBINED, reporter, jianpu_binary=jianpu_binary
    )
    if combined.events or combined.cancelled:
        return combined

    best = combined
    header = combined.metadata.model_copy(update={"inferred_defaults": []})
    for score_type in AUTO_FALLBACK_ORDER:
        result = recognize_systems(
            pre, options, pool, score_type, reporter.silent(), header, jianpu_binary
        )
        if result.cancelled:
            return result
        if result.events and (not best.events or result.confidence > best.confidence):
            best = result
    return best


def recognize(
    source: ImageSource,
    options: RecognizeOptions | None = None,
    progress: ProgressReporter | ProgressCallback | None = None,
    recognizer_factory: RecognizerFactory | None = None,
) -> RecognitionResult:
    """Recognize a guitar score image into an event stream.

    Expected failures never raise: fatal ones are reported through
    ``RecognitionResult.error`` with an empty event list.

    Args:
        source: Encoded bytes, a raw RGBA bitmap, an array, a PIL image or a path.
        options: Recognition options; defaults recognize any notation.
        progress: Reporter or ``(phase, percent)`` callback.
        recognizer_factory: Builds a text recognizer for a language;
            Tesseract is used when omitted.

    Returns:
        RecognitionResult for the page.
    """
    options = options or RecognizeOptions()
    reporter = ProgressReporter.wrap(progress)
    requested = options.type
    warnings: list[RecognitionWarning] = []

    try:
        reporter.check()
        loaded = load_image(source)
        warnings.extend(loaded.warnings)
        reporter.report("image loaded", 5)
        reporter.check()
        pre = preprocess(loaded.pixels, options.preprocess)
        logger.debug(
            f"Preprocessed at scale {pre.scale:.3f}, quality {pre.quality.value}, "
            f"inverted={pre.was_inverted}, deskewed={pre.was_deskewed}"
        )
        reporter.report("preprocessed", 25)
        reporter.check()
    except ScoreOCRError as e:
        return _failure(e, requested, warnings)

    with RecognizerPool(recognizer_factory, options.tesseract_cmd) as pool:
        if requested is ScoreType.AUTO:
            result = _recognize_auto(pre, options, pool, reporter)
        else:
            result = recognize_systems(pre, options, pool, requested, reporter)

    if not result.cancelled:
        reporter.report("complete", 100)
    logger.info(
        f"Recognized {len(result.events)} events as {result.type.value} "
        f"(confidence {result.confidence:.0f})"
    )
    return result.model_copy(update={"warnings": warnings + result.warnings})
