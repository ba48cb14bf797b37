"""Core domain models for guitar score recognition.

Geometry (boxes, lines, bands, systems) and the event stream that every
recognizer emits. Coordinates follow the usual computer vision convention
with (0, 0) at the top-left corner of the preprocessed image.
"""

import re
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

CHORD_PATTERN = re.compile(
    r"^[A-G][#b]?(?:m|dim|aug|sus|Maj|M)?[0-9]?(?:/[A-G][#b]?)?$"
)


class Duration(str, Enum):
    """Rhythmic value of a note or rest."""

    WHOLE = "whole"
    HALF = "half"
    QUARTER = "quarter"
    EIGHTH = "eighth"
    SIXTEENTH = "sixteenth"
    THIRTY_SECOND = "thirty_second"


class Accidental(str, Enum):
    SHARP = "sharp"
    FLAT = "flat"
    NATURAL = "natural"

    @property
    def semitones(self) -> int:
        """Pitch adjustment this accidental applies."""
        return {"sharp": 1, "flat": -1, "natural": 0}[self.value]


class Technique(str, Enum):
    HAMMER = "hammer"
    PULL = "pull"
    SLIDE = "slide"
    BEND = "bend"


class LineGroupKind(str, Enum):
    """Kind of equally spaced line group found by the line detector."""

    STAFF5 = "staff5"
    TAB6 = "tab6"

    @property
    def line_count(self) -> int:
        return 5 if self is LineGroupKind.STAFF5 else 6


class SystemType(str, Enum):
    STAFF = "staff"
    TAB = "tab"
    STAFF_TAB = "staff_tab"
    JIANPU = "jianpu"


class ScoreType(str, Enum):
    """Notation type requested by the caller or reported in the result."""

    AUTO = "auto"
    TAB = "tab"
    STAFF = "staff"
    JIANPU = "jianpu"
    COMBINED = "combined"


class ImageQuality(str, Enum):
    SCAN = "scan"
    PHOTO = "photo"
    SCREENSHOT = "screenshot"


class Clef(str, Enum):
    TREBLE = "treble"
    BASS = "bass"


class ScaleType(str, Enum):
    """Scale used to map jianpu degrees 1-7 onto semitones."""

    MAJOR = "Major"
    MINOR = "Minor"
    HARMONIC_MINOR = "Harmonic Minor"
    MELODIC_MINOR = "Melodic Minor"
    DORIAN = "Dorian"
    PHRYGIAN = "Phrygian"
    LYDIAN = "Lydian"
    MIXOLYDIAN = "Mixolydian"
    LOCRIAN = "Locrian"


class BinarizeMethod(str, Enum):
    OTSU = "otsu"
    SAUVOLA = "sauvola"
    ADAPTIVE = "adaptive"


class BoundingBox(BaseModel):
    """Axis-aligned box with inclusive-exclusive pixel edges.

    Attributes:
        x0: Left edge in pixels.
        y0: Top edge in pixels.
        x1: Right edge in pixels.
        y1: Bottom edge in pixels.
    """

    x0: float = Field(..., description="Left edge in pixels")
    y0: float = Field(..., description="Top edge in pixels")
    x1: float = Field(..., description="Right edge in pixels")
    y1: float = Field(..., description="Bottom edge in pixels")

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    @property
    def center_x(self) -> float:
        return (self.x0 + self.x1) / 2

    @property
    def center_y(self) -> float:
        return (self.y0 + self.y1) / 2


class RecognizedWord(BaseModel):
    """A word returned by the external text recognizer.

    Attributes:
        text: Recognized characters, already stripped of surrounding whitespace.
        bbox: Word box in the coordinates of the image handed to the recognizer.
        confidence: Recognizer confidence (0-100).
    """

    text: str = Field(..., description="Recognized characters")
    bbox: BoundingBox = Field(..., description="Word bounding box")
    confidence: float = Field(0.0, description="Recognizer confidence (0-100)")

    @property
    def center_x(self) -> float:
        return self.bbox.center_x

    @property
    def center_y(self) -> float:
        return self.bbox.center_y

    @property
    def char_width(self) -> float:
        """Average width of one character of the word."""
        return self.bbox.width / max(1, len(self.text))

    @property
    def char_height(self) -> float:
        return self.bbox.height


class DetectedLine(BaseModel):
    """A horizontal line found by row scanning.

    Attributes:
        y: Vertical position (mean of the merged row samples).
        strength: Largest row score among the merged samples (0-1).
    """

    y: float = Field(..., ge=0, description="Vertical position in pixels")
    strength: float = Field(..., ge=0, le=1, description="Row darkness score")


class LineGroup(BaseModel):
    """Five staff lines or six tab lines with near-constant spacing."""

    kind: LineGroupKind = Field(..., description="Staff5 or Tab6")
    lines: list[float] = Field(..., description="Ascending line y-positions")
    spacing: float = Field(..., gt=0, description="Mean gap between lines")

    @model_validator(mode="after")
    def _check_line_count(self) -> "LineGroup":
        if len(self.lines) != self.kind.line_count:
            raise ValueError(
                f"{self.kind.value} group needs {self.kind.line_count} lines, "
                f"got {len(self.lines)}"
            )
        return self

    @property
    def top(self) -> float:
        return self.lines[0]

    @property
    def bottom(self) -> float:
        return self.lines[-1]


class Band(BaseModel):
    """Horizontal strip of the page given by its top and bottom rows."""

    top: int = Field(..., ge=0, description="First row of the band")
    bottom: int = Field(..., ge=0, description="Row after the last row of the band")

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)


class System(BaseModel):
    """A typed block of notation in document order.

    Attributes:
        type: Staff, Tab, StaffTab or Jianpu.
        top: First row covered by the system.
        bottom: Last row covered by the system.
        staff_lines: Five staff line positions when the system has a staff.
        staff_spacing: Mean staff line gap.
        tab_lines: Six tab line positions when the system has a tab.
        tab_spacing: Mean tab line gap.
        chord_band: Strip above the system where chord symbols are printed.
        technique_band: Strip between staff and tab (StaffTab only).
        system_index: Position of the system in document order.
    """

    type: SystemType
    top: int = Field(..., ge=0)
    bottom: int = Field(..., ge=0)
    staff_lines: list[float] | None = None
    staff_spacing: float | None = None
    tab_lines: list[float] | None = None
    tab_spacing: float | None = None
    chord_band: Band | None = None
    technique_band: Band | None = None
    system_index: int = Field(0, ge=0)

    @property
    def band(self) -> Band:
        """The rows covered by the system itself."""
        return Band(top=self.top, bottom=self.bottom)


class NoteEvent(BaseModel):
    """A pitched note.

    Attributes:
        index: Dense position of the event in the output stream.
        midi: MIDI pitch (60 is middle C).
        duration: Rhythmic value; quarter when nothing suggests otherwise.
        source_string: Guitar string (0 is high E) for tab notes.
        fret: Fret number for tab notes.
        accidental: Accidental applied to the pitch, if any.
        chord_symbol: Chord name printed above the note.
        technique: Playing technique marked between staff and tab.
        confidence: Recognition confidence (0-100).
        x_center: Horizontal center of the source glyph in page pixels.
    """

    kind: Literal["note"] = "note"
    index: int = Field(0, ge=0, description="Position in the event stream")
    midi: int = Field(..., ge=0, le=127, description="MIDI note number")
    duration: Duration = Field(Duration.QUARTER, description="Rhythmic value")
    source_string: int | None = Field(None, ge=0, le=5, description="Tab string")
    fret: int | None = Field(None, ge=0, le=24, description="Tab fret")
    accidental: Accidental | None = None
    chord_symbol: str | None = None
    technique: Technique | None = None
    confidence: float = Field(0.0, ge=0, le=100, description="Confidence (0-100)")
    x_center: float | None = Field(None, description="Glyph center x in pixels")

    @field_validator("chord_symbol")
    @classmethod
    def _check_chord_symbol(cls, value: str | None) -> str | None:
        if value is not None and not CHORD_PATTERN.match(value):
            raise ValueError(f"Not a chord symbol: {value!r}")
        return value


class RestEvent(BaseModel):
    kind: Literal["rest"] = "rest"
    index: int = Field(0, ge=0)
    duration: Duration = Duration.QUARTER
    confidence: float = Field(0.0, ge=0, le=100)
    x_center: float | None = None


class TieEvent(BaseModel):
    """Jianpu `-` continuation of the previous note."""

    kind: Literal["tie"] = "tie"
    index: int = Field(0, ge=0)
    x_center: float | None = None


class BarlineEvent(BaseModel):
    kind: Literal["barline"] = "barline"
    index: int = Field(0, ge=0)
    x_center: float | None = None


Event = Annotated[
    Union[NoteEvent, RestEvent, TieEvent, BarlineEvent],
    Field(discriminator="kind"),
]
