"""Error kinds and exceptions raised by the recognition stages.

Stages raise the typed exceptions below; the pipeline turns them into the
``error`` and ``warnings`` fields of a ``RecognitionResult`` so callers get
a value back instead of an exception for every expected failure.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error and warning codes reported in recognition results."""

    INVALID_IMAGE = "invalid_image"
    IMAGE_TOO_SMALL = "image_too_small"
    IMAGE_TOO_LARGE = "image_too_large"
    NO_LINES_DETECTED = "no_lines_detected"
    NO_NOTES_DETECTED = "no_notes_detected"
    LOW_CONFIDENCE = "low_confidence"
    PREPROCESSING_FAILED = "preprocessing_failed"
    RECOGNIZER_ERROR = "recognizer_error"
    CANCELLED = "cancelled"


_DESCRIPTIONS: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.INVALID_IMAGE: (
        "The input is not a readable PNG, JPEG or GIF image",
        "Make sure the file is a valid image",
    ),
    ErrorKind.IMAGE_TOO_SMALL: (
        "The image is too small to recognize",
        "Use an image at least 50 pixels on each side",
    ),
    ErrorKind.IMAGE_TOO_LARGE: (
        "The image is large and will be downscaled",
        "Resize the image below 3000 pixels to speed up recognition",
    ),
    ErrorKind.NO_LINES_DETECTED: (
        "No staff or tab lines were found",
        "Check that the lines are clearly visible with enough contrast",
    ),
    ErrorKind.NO_NOTES_DETECTED: (
        "No notes could be recognized",
        "Try adjusting brightness and contrast or use a sharper image",
    ),
    ErrorKind.LOW_CONFIDENCE: (
        "Recognition confidence is low; results may be inaccurate",
        "Review the recognized notes and correct them by hand",
    ),
    ErrorKind.PREPROCESSING_FAILED: (
        "The image could not be preprocessed",
        "Try a different image or disable optional preprocessing steps",
    ),
    ErrorKind.RECOGNIZER_ERROR: (
        "The text recognizer failed",
        "Check that Tesseract and its language data are installed",
    ),
    ErrorKind.CANCELLED: (
        "Recognition was cancelled",
        "Start the recognition again to get a complete result",
    ),
}


def describe_error(kind: ErrorKind) -> tuple[str, str]:
    """Get the user-facing message and suggestion for an error kind.

    Args:
        kind: Error code to describe.

    Returns:
        Tuple of (message, suggestion).
    """
    return _DESCRIPTIONS[kind]


class ScoreOCRError(Exception):
    """Base exception for recognition errors.

    Attributes:
        kind: Error code reported in results.
        details: Optional context such as image dimensions.
    """

    kind = ErrorKind.RECOGNIZER_ERROR

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or describe_error(self.kind)[0])
        self.details = details or {}

    @property
    def suggestion(self) -> str:
        return describe_error(self.kind)[1]


class InvalidImageError(ScoreOCRError):
    """Exception raised when the input cannot be decoded as an image."""

    kind = ErrorKind.INVALID_IMAGE


class ImageTooSmallError(ScoreOCRError):
    """Exception raised when the smaller image side is under 50 pixels."""

    kind = ErrorKind.IMAGE_TOO_SMALL


class PreprocessingError(ScoreOCRError):
    """Exception raised when a preprocessing step fails."""

    kind = ErrorKind.PREPROCESSING_FAILED


class RecognizerError(ScoreOCRError):
    """Exception raised when the external text recognizer fails."""

    kind = ErrorKind.RECOGNIZER_ERROR


class CancelledError(ScoreOCRError):
    """Exception raised when the caller cancels a running recognition."""

    kind = ErrorKind.CANCELLED
