"""Command-line entry point: ``python -m guitar_score_ocr IMAGE``."""

import argparse
import logging
import sys
from pathlib import Path

import cv2

from guitar_score_ocr.models.core_models import BinarizeMethod, Clef, ScaleType, ScoreType
from guitar_score_ocr.models.settings_models import PreprocessParams, RecognizeOptions
from guitar_score_ocr.pipeline import recognize


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recognize a guitar score image and print the events as JSON."
    )
    parser.add_argument("image", type=Path, help="Path to the score image.")
    parser.add_argument(
        "--type",
        type=ScoreType,
        choices=list(ScoreType),
        default=ScoreType.AUTO,
        help="Notation type (default: auto).",
    )
    parser.add_argument("--key", default=None, help="Jianpu reference key, e.g. C, F#, Bb.")
    parser.add_argument(
        "--scale-type",
        type=ScaleType,
        choices=list(ScaleType),
        default=ScaleType.MAJOR,
        help="Scale used for jianpu degrees (default: Major).",
    )
    parser.add_argument(
        "--clef", type=Clef, choices=list(Clef), default=None, help="Staff clef."
    )
    parser.add_argument(
        "--binarize",
        type=BinarizeMethod,
        choices=list(BinarizeMethod),
        default=None,
        help="Binarization method (default: chosen from image quality).",
    )
    parser.add_argument(
        "--deskew",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Correct small rotations before recognition.",
    )
    parser.add_argument(
        "--header",
        dest="detect_header",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Extract title, key and tempo from the header (default: True).",
    )
    parser.add_argument(
        "--debug-image",
        type=Path,
        default=None,
        help="Optional path to store the debug overlay.",
    )
    parser.add_argument(
        "--tesseract-cmd",
        type=Path,
        default=None,
        help="Path to the Tesseract executable if it is not on PATH.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> RecognizeOptions:
    """Options from parsed arguments; unset keys keep their defaults."""
    fields = {
        "type": args.type,
        "scale_type": args.scale_type,
        "detect_header": args.detect_header,
        "debug_overlay": args.debug_image is not None,
        "preprocess": PreprocessParams(
            binarize_method=args.binarize, do_deskew=args.deskew
        ),
    }
    if args.key is not None:
        fields["key"] = args.key
    if args.clef is not None:
        fields["clef"] = args.clef
    if args.tesseract_cmd is not None:
        fields["tesseract_cmd"] = str(args.tesseract_cmd)
    return RecognizeOptions(**fields)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    result = recognize(args.image, build_options(args))
    if args.debug_image is not None and result.overlay is not None:
        cv2.imwrite(str(args.debug_image), cv2.cvtColor(result.overlay, cv2.COLOR_RGB2BGR))
    print(result.model_dump_json(indent=2))
    return 1 if result.error is not None and not result.cancelled else 0


if __name__ == "__main__":
    raise SystemExit(main())
