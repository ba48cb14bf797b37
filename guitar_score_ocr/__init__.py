"""Guitar score recognition library.

This package turns a photographed, scanned or screenshotted guitar score
into a stream of musical events. It reads tablature, five-line staff
notation, combined staff+tab systems and jianpu (numbered notation), plus
the title, key, tempo and credits printed above the music.

The recognition pipeline consists of:
1. Image loading and validation
2. Preprocessing (scaling, inversion, contrast, deskew, binarization)
3. Horizontal line detection and grouping into staves and tabs
4. System grouping with chord and technique bands
5. Header extraction
6. Per-system recognition with a text recognizer for digits and symbols

Example:
    Basic usage through the pipeline API:

    >>> from guitar_score_ocr.pipeline import recognize
    >>> from guitar_score_ocr.models import RecognizeOptions, ScoreType
    >>>
    >>> result = recognize("score.png", RecognizeOptions(type=ScoreType.TAB))
    >>> [note.midi for note in result.notes]
"""
