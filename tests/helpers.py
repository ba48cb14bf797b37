import cv2
import numpy as np

from guitar_score_ocr.models.core_models import BoundingBox, RecognizedWord
from guitar_score_ocr.models.pipeline_models import PreprocessResult, RecognizerOutput
from guitar_score_ocr.tab_recognition import FRET_WHITELIST


def make_word(text, x0, y0, x1, y1, confidence=90.0):
    return RecognizedWord(
        text=text,
        bbox=BoundingBox(x0=x0, y0=y0, x1=x1, y1=y1),
        confidence=confidence,
    )


class FakeRecognizer:
    """Scripted stand-in for a text recognizer.

    ``responder(recognizer, image)`` builds the output of each call;
    without one, queued ``outputs`` are returned in order and then empty
    outputs.
    """

    def __init__(self, language="eng", outputs=None, responder=None, fail=False):
        self.language = language
        self.outputs = list(outputs or [])
        self.responder = responder
        self.fail = fail
        self.psm = None
        self.whitelist = None
        self.calls = []
        self.terminated = False

    def set_parameters(self, psm=None, whitelist=None):
        if psm is not None:
            self.psm = psm
        self.whitelist = whitelist

    def recognize(self, image):
        self.calls.append((self.psm, self.whitelist, image.shape))
        if self.fail:
            raise RuntimeError("engine crashed")
        if self.responder is not None:
            return self.responder(self, image)
        if self.outputs:
            return self.outputs.pop(0)
        return RecognizerOutput()

    def terminate(self):
        self.terminated = True


class FakeFactory:
    """Recognizer factory handing out FakeRecognizers per language."""

    def __init__(self, responders=None, failing=()):
        self.responders = responders or {}
        self.failing = set(failing)
        self.created = {}

    def __call__(self, language):
        recognizer = FakeRecognizer(
            language,
            responder=self.responders.get(language),
            fail=language in self.failing,
        )
        self.created[language] = recognizer
        return recognizer


def fret_responder(systems_frets, page_width):
    """Answer tab strip calls with fret words at page x positions.

    Args:
        systems_frets: One dict per tab system mapping string index to a
            list of (text, x_center) pairs.
        page_width: Width of the page, to undo the strip upscaling.
    """
    state = {"strip": 0}

    def respond(recognizer, image):
        if recognizer.whitelist != FRET_WHITELIST:
            return RecognizerOutput()
        system, string_index = divmod(state["strip"], 6)
        state["strip"] += 1
        frets = systems_frets[system] if system < len(systems_frets) else {}
        scale = image.shape[1] / page_width
        words = [
            make_word(text, (x - 5) * scale, 0, (x + 5) * scale, image.shape[0])
            for text, x in frets.get(string_index, [])
        ]
        text = " ".join(text for text, _ in frets.get(string_index, []))
        return RecognizerOutput(text=text, confidence=90.0, words=words)

    return respond


def blank_page(width=600, height=200):
    return np.full((height, width), 255, dtype=np.uint8)


def draw_lines(page, ys, x0=20, x1=None, thickness=1):
    x1 = page.shape[1] - 20 if x1 is None else x1
    for y in ys:
        cv2.line(page, (x0, int(y)), (x1, int(y)), 0, thickness)
    return page


def as_preprocessed(gray):
    """Wrap a clean black-on-white page as a preprocessing result."""
    binary = np.where(gray < 128, 0, 255).astype(np.uint8)
    rgba = cv2.cvtColor(gray, cv2.COLOR_GRAY2RGBA)
    return PreprocessResult(original=rgba, greyscale=gray, processed=binary)


