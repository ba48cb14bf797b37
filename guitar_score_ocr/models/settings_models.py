"""Parameter models for recognition configuration.

This module defines Pydantic models that encapsulate every configurable
parameter of the recognition pipeline. Preprocessing overrides live in
their own model and are nested inside the top-level options, so a caller
can tune a single stage without restating the others.
"""

from pydantic import BaseModel, Field

from guitar_score_ocr.models.core_models import (
    BinarizeMethod,
    Clef,
    ScaleType,
    ScoreType,
)


class PreprocessParams(BaseModel):
    """Configuration parameters for image preprocessing.

    Fields left at ``None`` are chosen from the detected image quality
    (see ``image_processing.quality_defaults``).

    Attributes:
        do_scale: Rescale the image into the [min_dim, max_dim] band.
        max_dim: Largest allowed image dimension after scaling.
        min_dim: Smallest allowed largest-dimension after scaling.
        auto_quality: Classify image quality to pick default parameters.
        contrast: Contrast factor around 128, or None for the quality default.
        do_sharpen: Apply a 3x3 sharpen kernel, or None for the quality default.
        do_blur: Apply a Gaussian blur, or None for the quality default.
        blur_radius: Gaussian blur radius in pixels.
        binarize_method: Otsu, Sauvola or the adaptive selector, or None for
            Sauvola on photos and the adaptive selector otherwise.
        auto_invert: Invert dark images before and after binarization.
        do_deskew: Estimate and correct small rotations.
        do_morph_open: Remove speckle with erosion then dilation, or None to
            apply it only on the jianpu path.
    """

    do_scale: bool = Field(True, description="Rescale into the OCR-friendly band")
    max_dim: int = Field(3000, ge=100, le=10000, description="Maximum dimension")
    min_dim: int = Field(500, ge=50, le=5000, description="Minimum largest dimension")
    auto_quality: bool = Field(True, description="Derive defaults from image quality")
    contrast: float | None = Field(
        None, ge=0.1, le=5.0, description="Contrast factor around 128"
    )
    do_sharpen: bool | None = Field(None, description="Apply sharpen kernel")
    do_blur: bool | None = Field(None, description="Apply Gaussian blur")
    blur_radius: int = Field(1, ge=1, le=10, description="Gaussian blur radius")
    binarize_method: BinarizeMethod | None = Field(
        None, description="Binarization method (None: by quality)"
    )
    auto_invert: bool = Field(True, description="Invert white-on-black images")
    do_deskew: bool = Field(False, description="Correct small rotations")
    do_morph_open: bool | None = Field(
        None, description="Morphological open (None: jianpu path only)"
    )

    @classmethod
    def disabled(cls) -> "PreprocessParams":
        """Parameters that turn every optional step off.

        Only greyscale conversion and a global Otsu threshold remain, so
        running the preprocessor twice gives the same pixels as running it
        once.
        """
        return cls(
            do_scale=False,
            auto_quality=False,
            contrast=1.0,
            do_sharpen=False,
            do_blur=False,
            binarize_method=BinarizeMethod.OTSU,
            auto_invert=False,
            do_deskew=False,
            do_morph_open=False,
        )


class RecognizeOptions(BaseModel):
    """Complete configuration for one recognition call.

    Attributes:
        type: Notation to recognize; Auto tries Combined then each single type.
        key: Reference key for jianpu digits.
        scale_type: Scale used to map jianpu degrees to semitones.
        clef: Clef assumed for staff systems.
        detect_header: Extract title, key, tempo and friends above the music.
        detect_chords: Read chord symbols in the band above each system.
        detect_octave_dots: Look for jianpu octave dots.
        detect_duration_lines: Look for jianpu duration underlines.
        remove_staff_lines: Erase staff lines before notehead detection.
        try_jianpu: Fall back to jianpu rows when no line groups are found.
        min_confidence_warning: Confidence under which a warning is raised.
        debug_overlay: Attach an annotated image to the result.
        tesseract_cmd: Path to the tesseract binary, if not on PATH.
        preprocess: Preprocessing overrides.
    """

    type: ScoreType = Field(ScoreType.AUTO, description="Notation type")
    key: str = Field("C", pattern=r"^[A-G][#b]?$", description="Jianpu reference key")
    scale_type: ScaleType = Field(ScaleType.MAJOR, description="Jianpu scale")
    clef: Clef = Field(Clef.TREBLE, description="Staff clef")
    detect_header: bool = Field(True, description="Extract header metadata")
    detect_chords: bool = Field(True, description="Detect chord symbols")
    detect_octave_dots: bool = Field(True, description="Detect jianpu octave dots")
    detect_duration_lines: bool = Field(
        True, description="Detect jianpu duration underlines"
    )
    remove_staff_lines: bool = Field(True, description="Erase staff lines first")
    try_jianpu: bool = Field(True, description="Fall back to jianpu rows")
    min_confidence_warning: float = Field(
        30.0, ge=0, le=100, description="Low confidence warning threshold"
    )
    debug_overlay: bool = Field(False, description="Render a debug overlay")
    tesseract_cmd: str | None = Field(None, description="Tesseract executable")
    preprocess: PreprocessParams = Field(
        default_factory=PreprocessParams, description="Preprocessing overrides"
    )
