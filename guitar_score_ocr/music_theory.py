"""
Pitch mapping utilities.

This module maps recognized symbols to MIDI numbers: tab frets on a
standard-tuned guitar, staff positions under a clef, and jianpu scale
degrees in a key. Scale and key arithmetic is delegated to music21.
"""

import logging
import re
from functools import lru_cache

from music21 import key as music21_key
from music21 import pitch, scale

from guitar_score_ocr.models.core_models import Clef, ScaleType

logger = logging.getLogger(__name__)

# Open string pitches, high E (string 0) to low E (string 5)
STRING_TUNINGS = [64, 59, 55, 50, 45, 40]
MAX_FRET = 24
DIATONIC_STEPS = [0, 2, 4, 5, 7, 9, 11]

# MIDI number of the C starting the anchor octave, and the diatonic degree
# of the bottom staff line within it (treble E4, bass G2)
CLEF_ANCHORS = {
    Clef.TREBLE: (60, 2),
    Clef.BASS: (36, 4),
}

SCALE_CLASSES = {
    ScaleType.MAJOR: scale.MajorScale,
    ScaleType.MINOR: scale.MinorScale,
    ScaleType.HARMONIC_MINOR: scale.HarmonicMinorScale,
    ScaleType.MELODIC_MINOR: scale.MelodicMinorScale,
    ScaleType.DORIAN: scale.DorianScale,
    ScaleType.PHRYGIAN: scale.PhrygianScale,
    ScaleType.LYDIAN: scale.LydianScale,
    ScaleType.MIXOLYDIAN: scale.MixolydianScale,
    ScaleType.LOCRIAN: scale.LocrianScale,
}

KEY_PATTERN = re.compile(r"^([A-G])([#b]?)(m?)$")


def tab_to_midi(string_index: int, fret: int) -> int:
    """MIDI pitch of a fret on a standard-tuned guitar string.

    Args:
        string_index: 0 for high E through 5 for low E.
        fret: Fret number (0-24).

    Returns:
        Open string pitch plus the fret.
    """
    return STRING_TUNINGS[string_index] + fret


def staff_position_to_midi(position: int, clef: Clef = Clef.TREBLE) -> int:
    """MIDI pitch of a staff position.

    Position 0 is the bottom line; each step is half a line gap and walks
    the C major ladder (treble bottom line E4, bass bottom line G2).

    Args:
        position: Half-gap steps above the bottom line (negative below).
        clef: Treble or bass clef.

    Returns:
        MIDI note number.
    """
    base_c, degree = CLEF_ANCHORS[clef]
    octave, step = divmod(degree + position, 7)
    return base_c + 12 * octave + DIATONIC_STEPS[step]


@lru_cache(maxsize=None)
def scale_intervals(scale_type: ScaleType = ScaleType.MAJOR) -> tuple[int, ...]:
    """Semitone offsets of scale degrees 1-7 above the tonic.

    Args:
        scale_type: Scale to realize.

    Returns:
        Seven ascending offsets starting at 0.
    """
    scale_obj = SCALE_CLASSES[scale_type]("C")
    pitches = scale_obj.getPitches("C4", "B4")
    intervals = tuple(sorted({(p.midi - 60) % 12 for p in pitches}))
    if len(intervals) != 7:
        raise ValueError(f"{scale_type.value} scale realized as {intervals}")
    return intervals


def _music21_name(name: str) -> str:
    """Spell a key root the way music21 expects (flats as '-')."""
    return name[0] + name[1:].replace("b", "-").replace("♭", "-").replace("♯", "#")


def key_offset(key: str) -> int:
    """Semitones from C to a key root such as ``"Bb"`` or ``"F#"``."""
    return pitch.Pitch(_music21_name(key)).pitchClass


def parse_key(key: str) -> tuple[str, bool] | None:
    """Split a normalized key such as ``"F#m"`` into (root, is_minor).

    Returns:
        None when the text is not a key.
    """
    match = KEY_PATTERN.match(key.strip())
    if not match:
        return None
    return match.group(1) + match.group(2), bool(match.group(3))


def jianpu_key_from_header(key: str) -> str | None:
    """Reference key ("1=") implied by a header key.

    Minor keys are read with the relative major as degree 1, as numbered
    notation writes them.
    """
    parsed = parse_key(key)
    if parsed is None:
        return None
    root, is_minor = parsed
    if not is_minor:
        return root
    relative = music21_key.Key(_music21_name(root).lower()).relative
    return relative.tonic.name.replace("-", "b")


def jianpu_to_midi(
    degree: int,
    key: str = "C",
    scale_type: ScaleType = ScaleType.MAJOR,
    octave: int = 0,
    accidental: int = 0,
) -> int:
    """MIDI pitch of a jianpu digit.

    Args:
        degree: Scale degree 1-7.
        key: Reference key (pitch of degree 1 in octave 4).
        scale_type: Scale used to map degrees to semitones.
        octave: Octave dots, positive above and negative below.
        accidental: +1 for sharp, -1 for flat.

    Returns:
        MIDI note number.
    """
    if not 1 <= degree <= 7:
        raise ValueError(f"Jianpu degree must be 1-7, got {degree}")
    return (
        60
        + key_offset(key)
        + scale_intervals(scale_type)[degree - 1]
        + 12 * octave
        + accidental
    )


def get_note_name(midi: int) -> str:
    """Get the note name with octave for a MIDI number (e.g. 60 -> "C4")."""
    p = pitch.Pitch()
    p.midi = midi
    return p.nameWithOctave
