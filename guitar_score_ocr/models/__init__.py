"""Domain models for the guitar score recognizer.

This module provides a centralized location for all data models used
throughout the recognition pipeline. It includes:

- Core domain models (geometry, systems and the event stream)
- Stage results (decoded image, preprocessing, header, final result)
- Configuration parameters for preprocessing and recognition

All models are built using Pydantic for data validation and serialization,
ensuring type safety and clear interfaces between pipeline components.
"""

# Re-export core models
from guitar_score_ocr.models.core_models import (
    CHORD_PATTERN,
    Accidental,
    Band,
    BarlineEvent,
    BinarizeMethod,
    BoundingBox,
    Clef,
    DetectedLine,
    Duration,
    Event,
    ImageQuality,
    LineGroup,
    LineGroupKind,
    NoteEvent,
    RecognizedWord,
    RestEvent,
    ScaleType,
    ScoreType,
    System,
    SystemType,
    Technique,
    TieEvent,
)

# Re-export pipeline models
from guitar_score_ocr.models.pipeline_models import (
    HeaderMetadata,
    LoadedImage,
    PreprocessResult,
    RecognitionResult,
    RecognitionWarning,
    RecognizerOutput,
    SystemInfo,
)

# Re-export setting models
from guitar_score_ocr.models.settings_models import PreprocessParams, RecognizeOptions
