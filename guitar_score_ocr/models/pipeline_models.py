"""Models for representing recognition stage outputs.

This module contains Pydantic models that encapsulate the results of each
stage of the recognition pipeline, from the decoded image to the final
event stream. Pixel buffers are plain NumPy arrays.
"""

import numpy as np
from pydantic import BaseModel, Field

from guitar_score_ocr.errors import ErrorKind
from guitar_score_ocr.models.core_models import (
    Event,
    ImageQuality,
    RecognizedWord,
    ScoreType,
    SystemType,
)


class RecognitionWarning(BaseModel):
    """A non-fatal condition surfaced alongside a result.

    Attributes:
        kind: Warning code.
        message: Human readable description.
    """

    kind: ErrorKind
    message: str = ""


class LoadedImage(BaseModel):
    """Decoded input image.

    Attributes:
        pixels: H x W x 4 RGBA uint8 array.
        warnings: Warnings raised while validating the image.
    """

    pixels: np.ndarray = Field(..., description="RGBA pixels")
    warnings: list[RecognitionWarning] = Field(default_factory=list)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    class Config:
        arbitrary_types_allowed = True


class PreprocessResult(BaseModel):
    """Result of the preprocessing stage.

    Ink is dark in every buffer: binarized pixels are 0 for ink and 255 for
    background.

    Attributes:
        original: Scaled RGBA image before greyscale conversion.
        greyscale: Greyscale image after inversion and deskew but before
            blur, contrast and sharpening; shares the geometry of
            ``processed`` and feeds the tab strip OCR.
        processed: Binarized image.
        scale: Factor applied by smart scaling.
        quality: Detected image quality.
        was_inverted: Whether the image was inverted at any point.
        was_deskewed: Whether a rotation was applied.
        deskew_angle: Estimated skew in degrees (0 when not measured).
    """

    original: np.ndarray = Field(..., description="Scaled RGBA image")
    greyscale: np.ndarray = Field(..., description="Aligned greyscale image")
    processed: np.ndarray = Field(..., description="Binarized image")
    scale: float = Field(1.0, gt=0, description="Scale factor applied")
    quality: ImageQuality = Field(ImageQuality.SCAN, description="Image quality")
    was_inverted: bool = False
    was_deskewed: bool = False
    deskew_angle: float = 0.0

    @property
    def binary(self) -> np.ndarray:
        return self.processed

    class Config:
        arbitrary_types_allowed = True


class RecognizerOutput(BaseModel):
    """What the external text recognizer returns for one image.

    Attributes:
        text: Full recognized text, lines separated by newlines.
        confidence: Mean word confidence (0-100).
        words: Word-level results with boxes.
    """

    text: str = ""
    confidence: float = 0.0
    words: list[RecognizedWord] = Field(default_factory=list)


class HeaderMetadata(BaseModel):
    """Score metadata read from the header region.

    Attributes:
        title: First line of the header that is not metadata.
        key: Normalized key such as ``"Am"`` or ``"F#"``.
        tempo: Beats per minute.
        time_signature: Time signature such as ``"3/4"``.
        capo: Capo fret.
        composer: Composer name.
        lyricist: Lyricist name.
        raw_text: Text returned by the recognizer.
        inferred_defaults: Assumptions made because the image did not say.
    """

    title: str | None = None
    key: str | None = None
    tempo: int | None = None
    time_signature: str | None = None
    capo: int | None = None
    composer: str | None = None
    lyricist: str | None = None
    raw_text: str = ""
    inferred_defaults: list[str] = Field(default_factory=list)


class SystemInfo(BaseModel):
    """Per-system summary included in a recognition result."""

    type: SystemType
    top: int
    bottom: int
    event_count: int = 0
    confidence: float | None = None
    error: ErrorKind | None = None


class RecognitionResult(BaseModel):
    """Final output of a recognition call.

    Attributes:
        type: Notation type the events were read as.
        events: Event stream with dense indices.
        metadata: Header metadata.
        confidence: Mean confidence of events that carry one (0-100).
        system_count: Number of systems processed.
        systems: Per-system summaries.
        warnings: Non-fatal conditions.
        error: Fatal error, in which case ``events`` is empty, or
            ``cancelled`` with the events read before cancellation.
        cancelled: Whether the caller cancelled the run.
        overlay: Debug overlay image when requested.
    """

    type: ScoreType = ScoreType.AUTO
    events: list[Event] = Field(default_factory=list)
    metadata: HeaderMetadata = Field(default_factory=HeaderMetadata)
    confidence: float = Field(0.0, ge=0, le=100)
    system_count: int = 0
    systems: list[SystemInfo] = Field(default_factory=list)
    warnings: list[RecognitionWarning] = Field(default_factory=list)
    error: ErrorKind | None = None
    cancelled: bool = False
    overlay: np.ndarray | None = Field(None, exclude=True)

    @property
    def notes(self) -> list:
        """Only the note events of the stream."""
        return [event for event in self.events if event.kind == "note"]

    class Config:
        arbitrary_types_allowed = True
