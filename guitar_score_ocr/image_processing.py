"""Image preprocessing for score recognition.

This module turns a decoded RGBA image into a clean binary image: smart
scaling, greyscale conversion, quality classification, dark image
inversion, blur, contrast, sharpening, optional deskew, Otsu or Sauvola
binarization and an optional morphological open.

Every greyscale buffer keeps ink dark. Binary images hold 0 for ink and
255 for background, and any value under 128 counts as ink.
"""

import logging
import math

import cv2
import numpy as np

from guitar_score_ocr.errors import PreprocessingError, ScoreOCRError
from guitar_score_ocr.models.core_models import BinarizeMethod, ImageQuality
from guitar_score_ocr.models.pipeline_models import PreprocessResult
from guitar_score_ocr.models.settings_models import PreprocessParams

logger = logging.getLogger(__name__)

INK_THRESHOLD = 128
MIN_DESKEW_ANGLE = 0.3
MAX_DESKEW_ANGLE = 5.0
SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


def smart_scale(
    image: np.ndarray, max_dim: int = 3000, min_dim: int = 500
) -> tuple[np.ndarray, float]:
    """Rescale an image so its largest side falls into [min_dim, max_dim].

    Scale factors within 5% of 1 are ignored. Aspect ratio is preserved.

    Args:
        image: Image array of any channel count.
        max_dim: Largest allowed dimension.
        min_dim: Smallest allowed largest-dimension.

    Returns:
        Tuple of (scaled image, scale factor).
    """
    height, width = image.shape[:2]
    largest = max(width, height)
    scale = 1.0
    if largest > max_dim:
        scale = max_dim / largest
    elif largest < min_dim:
        scale = min_dim / largest

    if abs(scale - 1.0) < 0.05:
        return image, 1.0

    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR
    logger.debug(f"Scaling {width}x{height} by {scale:.3f} to {new_size}")
    return cv2.resize(image, new_size, interpolation=interpolation), scale


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert RGB or RGBA pixels to luma (0.299R + 0.587G + 0.114B).

    Transparent pixels are composited over white first. Greyscale input is
    returned unchanged.
    """
    if image.ndim == 2:
        return image
    rgb = image[..., :3].astype(np.float64)
    if image.shape[2] == 4:
        alpha = image[..., 3:4].astype(np.float64) / 255.0
        rgb = rgb * alpha + 255.0 * (1.0 - alpha)
    gray = rgb @ np.array([0.299, 0.587, 0.114])
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


def build_histogram(gray: np.ndarray) -> np.ndarray:
    """Count pixels per intensity (256 bins)."""
    return np.bincount(gray.ravel(), minlength=256)[:256]


def _window_sums(hist: np.ndarray, radius: int) -> tuple[np.ndarray, np.ndarray]:
    """Sum each bin with its neighbours within ``radius``, clipped at the ends.

    Returns:
        Tuple of (window sums, number of bins in each window).
    """
    cumulative = np.concatenate([[0], np.cumsum(hist, dtype=np.float64)])
    bins = np.arange(256)
    lo = np.maximum(0, bins - radius)
    hi = np.minimum(255, bins + radius)
    return cumulative[hi + 1] - cumulative[lo], hi - lo + 1


def _smooth_histogram(hist: np.ndarray, radius: int) -> np.ndarray:
    sums, counts = _window_sums(hist, radius)
    return sums / counts


def estimate_noise(gray: np.ndarray) -> float:
    """Mean absolute 4-neighbour difference on a sparse sample grid."""
    height, width = gray.shape
    if height < 3 or width < 3:
        return 0.0
    step = max(4, min(width, height) // 100)
    ys = np.arange(1, height - 1, step)
    xs = np.arange(1, width - 1, step)
    img = gray.astype(np.int32)
    center = img[np.ix_(ys, xs)]
    diff = (
        np.abs(center - img[np.ix_(ys, xs - 1)])
        + np.abs(center - img[np.ix_(ys, xs + 1)])
        + np.abs(center - img[np.ix_(ys - 1, xs)])
        + np.abs(center - img[np.ix_(ys + 1, xs)])
    )
    return float(np.mean(diff / 4.0))


def classify_quality(gray: np.ndarray) -> ImageQuality:
    """Classify an image as a screenshot, scan or photo.

    Uses histogram entropy, a local noise estimate and the number of
    peaks of the smoothed histogram.

    Args:
        gray: Greyscale image.

    Returns:
        The detected ImageQuality.
    """
    hist = build_histogram(gray)
    total = gray.size
    p = hist[hist > 0] / total
    entropy = float(-np.sum(p * np.log2(p)))
    noise = estimate_noise(gray)

    smoothed = _smooth_histogram(hist, 5)
    inner = smoothed[1:255]
    peaks = int(
        np.count_nonzero(
            (inner > smoothed[:254]) & (inner > smoothed[2:]) & (inner > total * 0.005)
        )
    )

    logger.debug(f"Quality stats: entropy={entropy:.2f} noise={noise:.2f} peaks={peaks}")
    if entropy < 4.0 and noise < 3:
        return ImageQuality.SCREENSHOT
    if noise > 8 or (entropy > 5.5 and peaks > 3):
        return ImageQuality.PHOTO
    return ImageQuality.SCAN


def quality_defaults(quality: ImageQuality) -> dict:
    """Default preprocessing parameters for an image quality.

    Returns:
        Dict with ``contrast``, ``do_sharpen``, ``do_blur`` and
        ``binarize_method`` keys.
    """
    return {
        "contrast": {
            ImageQuality.PHOTO: 1.4,
            ImageQuality.SCAN: 1.3,
            ImageQuality.SCREENSHOT: 1.1,
        }[quality],
        "do_sharpen": quality is not ImageQuality.SCREENSHOT,
        "do_blur": quality is ImageQuality.PHOTO,
        "binarize_method": (
            BinarizeMethod.SAUVOLA
            if quality is ImageQuality.PHOTO
            else BinarizeMethod.ADAPTIVE
        ),
    }


def is_dark_image(gray: np.ndarray) -> bool:
    """Detect white-on-black images.

    Samples every third pixel of the central 60% of the image and reports
    a dark image when both the median and the dominant histogram peak are
    below 128.
    """
    height, width = gray.shape
    y0, y1 = int(height * 0.2), int(height * 0.8)
    x0, x1 = int(width * 0.2), int(width * 0.8)
    values = gray[y0:y1:3, x0:x1:3].ravel()
    if values.size == 0:
        return False

    median = int(np.sort(values)[values.size // 2])
    hist = np.bincount(values, minlength=256)[:256]
    window_sums, _ = _window_sums(hist, 5)
    peak = int(np.argmax(window_sums))
    return median < INK_THRESHOLD and peak < INK_THRESHOLD


def invert(gray: np.ndarray) -> np.ndarray:
    return 255 - gray


def gaussian_blur(gray: np.ndarray, radius: int = 1) -> np.ndarray:
    """Separable Gaussian blur with sigma = radius / 2 and clamped edges."""
    if radius < 1:
        return gray
    offsets = np.arange(-radius, radius + 1, dtype=np.float64)
    sigma = radius / 2
    kernel = np.exp(-(offsets**2) / (2 * sigma * sigma))
    kernel /= kernel.sum()
    return cv2.sepFilter2D(
        gray, -1, kernel, kernel, borderType=cv2.BORDER_REPLICATE
    )


def adjust_contrast(gray: np.ndarray, factor: float) -> np.ndarray:
    """Scale intensities linearly around the midpoint 128."""
    stretched = (gray.astype(np.float64) - 128.0) * factor + 128.0
    return np.clip(np.rint(stretched), 0, 255).astype(np.uint8)


def sharpen(gray: np.ndarray) -> np.ndarray:
    """Apply the 3x3 sharpen kernel, leaving the one-pixel border untouched."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return gray
    filtered = cv2.filter2D(gray, -1, SHARPEN_KERNEL)
    result = gray.copy()
    result[1:-1, 1:-1] = filtered[1:-1, 1:-1]
    return result


def _ink_mask(image: np.ndarray) -> np.ndarray:
    return image < INK_THRESHOLD


def _trace_line(
    ink: np.ndarray, x: int, center_y: float, step: int, radius: int, max_gap: int = 3
) -> tuple[int, float]:
    """Follow a dark line from (x, center_y) in one horizontal direction.

    Returns:
        The last column where ink was found and the line centroid there.
    """
    height, width = ink.shape
    last_x, last_y = x, center_y
    gap = 0
    cx = x + step
    while 0 <= cx < width:
        row = int(round(center_y))
        top = max(0, row - radius)
        rows = np.flatnonzero(ink[top : min(height, row + radius + 1), cx])
        if rows.size:
            center_y = top + float(rows.mean())
            last_x, last_y = cx, center_y
            gap = 0
        else:
            gap += 1
            if gap > max_gap:
                break
        cx += step
    return last_x, last_y


def _line_thickness(ink: np.ndarray, x: int, y: int) -> int:
    top = y
    while top > 0 and ink[top - 1, x]:
        top -= 1
    bottom = y
    while bottom < ink.shape[0] - 1 and ink[bottom + 1, x]:
        bottom += 1
    return bottom - top + 1


def estimate_skew_angle(binary: np.ndarray, min_length_ratio: float = 0.3) -> float:
    """Estimate page skew from long, nearly horizontal lines.

    Rows are sampled on a sparse grid. Every ink run found on a sampled row
    seeds a trace that follows the line left and right; traces spanning at
    least ``min_length_ratio`` of the width contribute the angle between
    the line centroids at their two ends. The median angle is returned.

    Args:
        binary: Binarized image (ink < 128).
        min_length_ratio: Minimum traced length as a fraction of the width.

    Returns:
        Skew angle in degrees; positive when lines descend to the right.
        0.0 when no long line is found.
    """
    ink = _ink_mask(binary)
    height, width = ink.shape
    step = max(2, height // 100)
    min_length = width * min_length_ratio
    angles = []
    segments = []

    for y in range(step, height - step, step):
        row = ink[y]
        if not row.any():
            continue
        padded = np.concatenate([[False], row, [False]]).astype(np.int8)
        edges = np.flatnonzero(np.diff(padded))
        for start, end in zip(edges[::2], edges[1::2]):
            if end - start < 8:
                continue
            seed_x = int((start + end) // 2)
            if any(
                x0 <= seed_x <= x1
                and abs(y0 + (y1 - y0) * (seed_x - x0) / max(1, x1 - x0) - y) <= 3
                for x0, y0, x1, y1 in segments
            ):
                continue

            radius = _line_thickness(ink, seed_x, y) // 2 + 2
            left_x, left_y = _trace_line(ink, seed_x, float(y), -1, radius)
            right_x, right_y = _trace_line(ink, seed_x, float(y), 1, radius)
            if right_x - left_x < min_length:
                continue
            segments.append((left_x, left_y, right_x, right_y))
            angles.append(math.degrees(math.atan2(right_y - left_y, right_x - left_x)))

    if not angles:
        return 0.0
    return float(np.median(angles))


def rotate_image(gray: np.ndarray, angle: float) -> np.ndarray:
    """Rotate around the image center so a line at ``angle`` becomes level.

    Uncovered corners are filled with white.
    """
    height, width = gray.shape[:2]
    matrix = cv2.getRotationMatrix2D((width / 2, height / 2), angle, 1.0)
    return cv2.warpAffine(
        gray,
        matrix,
        (width, height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=255,
    )


def deskew(
    gray: np.ndarray,
    min_angle: float = MIN_DESKEW_ANGLE,
    max_angle: float = MAX_DESKEW_ANGLE,
) -> tuple[np.ndarray, float, bool]:
    """Detect and correct a small page rotation.

    The angle is measured on a temporary Otsu binarization. Rotation is only
    applied when ``min_angle <= |angle| <= max_angle``.

    Args:
        gray: Greyscale image.
        min_angle: Smallest angle worth correcting, in degrees.
        max_angle: Largest angle considered a skew rather than layout.

    Returns:
        Tuple of (image, measured angle, whether the image was rotated).
    """
    angle = estimate_skew_angle(binarize_otsu(gray))
    if not min_angle <= abs(angle) <= max_angle:
        logger.debug(f"Skew angle {angle:.2f} outside correction range")
        return gray, angle, False
    logger.debug(f"Deskewing by {angle:.2f} degrees")
    return rotate_image(gray, angle), angle, True


def otsu_threshold(gray: np.ndarray) -> int:
    """Global threshold maximizing between-class variance."""
    threshold, _ = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return int(threshold)


def binarize_otsu(gray: np.ndarray) -> np.ndarray:
    """Pixels above the Otsu threshold become 255, the rest 0."""
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return binary


def sauvola_window(width: int, height: int) -> int:
    """Default Sauvola window: an eighth of the smaller side, odd, at least 15."""
    window = max(15, (min(width, height) // 8) | 1)
    if window % 2 == 0:
        window += 1
    return window


def sauvola_thresholds(
    gray: np.ndarray, window: int = 0, k: float = 0.2, r: float = 128.0
) -> np.ndarray:
    """Per-pixel Sauvola thresholds computed with integral images.

    T(x, y) = mean * (1 + k * (std / r - 1)) over a window clipped to the
    image, so the pass is O(W * H) regardless of the window size.

    Args:
        gray: Greyscale image.
        window: Window size; 0 selects ``sauvola_window``.
        k: Sensitivity parameter.
        r: Dynamic range of the standard deviation.

    Returns:
        Float64 array of thresholds with the shape of ``gray``.
    """
    height, width = gray.shape
    if window <= 0:
        window = sauvola_window(width, height)
    if window % 2 == 0:
        window += 1
    half = window // 2

    sums, squares = cv2.integral2(gray, sdepth=cv2.CV_64F, sqdepth=cv2.CV_64F)

    ys = np.arange(height)
    xs = np.arange(width)
    y0 = np.maximum(0, ys - half)[:, None]
    y1 = np.minimum(height - 1, ys + half)[:, None] + 1
    x0 = np.maximum(0, xs - half)[None, :]
    x1 = np.minimum(width - 1, xs + half)[None, :] + 1
    count = (y1 - y0) * (x1 - x0)

    total = sums[y1, x1] - sums[y0, x1] - sums[y1, x0] + sums[y0, x0]
    total_sq = squares[y1, x1] - squares[y0, x1] - squares[y1, x0] + squares[y0, x0]
    mean = total / count
    std = np.sqrt(np.maximum(0.0, total_sq / count - mean * mean))
    return mean * (1.0 + k * (std / r - 1.0))


def binarize_sauvola(
    gray: np.ndarray, window: int = 0, k: float = 0.2, r: float = 128.0
) -> np.ndarray:
    """Local Sauvola binarization; see ``sauvola_thresholds``."""
    thresholds = sauvola_thresholds(gray, window, k, r)
    return np.where(gray > thresholds, 255, 0).astype(np.uint8)


def is_bimodal(gray: np.ndarray) -> bool:
    """Check for exactly two strong, well separated histogram peaks."""
    hist = build_histogram(gray)
    smoothed = _smooth_histogram(hist, 3)
    center = smoothed[2:254]
    is_peak = (
        (center > smoothed[1:253])
        & (center > smoothed[3:255])
        & (center > smoothed[0:252])
        & (center > smoothed[4:256])
        & (center > gray.size * 0.01)
    )
    peaks = np.flatnonzero(is_peak) + 2
    return len(peaks) == 2 and abs(int(peaks[1]) - int(peaks[0])) > 60


def binarize_adaptive(gray: np.ndarray) -> np.ndarray:
    """Otsu for bimodal histograms, Sauvola otherwise."""
    if is_bimodal(gray):
        logger.debug("Bimodal histogram, using Otsu")
        return binarize_otsu(gray)
    logger.debug("Non-bimodal histogram, using Sauvola")
    return binarize_sauvola(gray)


def binarize(gray: np.ndarray, method: BinarizeMethod) -> np.ndarray:
    if method is BinarizeMethod.OTSU:
        return binarize_otsu(gray)
    if method is BinarizeMethod.SAUVOLA:
        return binarize_sauvola(gray)
    return binarize_adaptive(gray)


def morphological_open(binary: np.ndarray, radius: int = 1) -> np.ndarray:
    """Erode then dilate the ink to drop specks smaller than the kernel."""
    size = 2 * radius + 1
    kernel = np.ones((size, size), dtype=np.uint8)
    ink = _ink_mask(binary).astype(np.uint8)
    opened = cv2.dilate(cv2.erode(ink, kernel), kernel)
    return np.where(opened > 0, 0, 255).astype(np.uint8)


def _run_preprocess(image: np.ndarray, params: PreprocessParams) -> PreprocessResult:
    scale = 1.0
    if params.do_scale:
        image, scale = smart_scale(image, params.max_dim, params.min_dim)
    original = image.copy()

    gray = to_grayscale(image)
    quality = classify_quality(gray) if params.auto_quality else ImageQuality.SCAN
    defaults = quality_defaults(quality)
    contrast = params.contrast if params.contrast is not None else defaults["contrast"]
    do_sharpen = (
        params.do_sharpen if params.do_sharpen is not None else defaults["do_sharpen"]
    )
    do_blur = params.do_blur if params.do_blur is not None else defaults["do_blur"]
    method = params.binarize_method or defaults["binarize_method"]
    logger.debug(
        f"Preprocessing {gray.shape[1]}x{gray.shape[0]} quality={quality.value} "
        f"contrast={contrast} sharpen={do_sharpen} blur={do_blur} method={method.value}"
    )

    was_inverted = False
    if params.auto_invert and is_dark_image(gray):
        logger.debug("Dark image detected, inverting")
        gray = invert(gray)
        was_inverted = True
    aligned = gray

    work = gray
    if do_blur:
        work = gaussian_blur(work, params.blur_radius)
    if contrast != 1.0:
        work = adjust_contrast(work, contrast)
    if do_sharpen:
        work = sharpen(work)

    deskew_angle = 0.0
    was_deskewed = False
    if params.do_deskew:
        work, deskew_angle, was_deskewed = deskew(work)
        if was_deskewed:
            aligned = rotate_image(aligned, deskew_angle)

    binary = binarize(work, method)
    if params.auto_invert and is_dark_image(binary):
        logger.debug("Binarization produced white-on-black output, inverting")
        binary = invert(binary)
        was_inverted = True

    if params.do_morph_open:
        binary = morphological_open(binary)

    return PreprocessResult(
        original=original,
        greyscale=aligned,
        processed=binary,
        scale=scale,
        quality=quality,
        was_inverted=was_inverted,
        was_deskewed=was_deskewed,
        deskew_angle=deskew_angle,
    )


def preprocess(image: np.ndarray, params: PreprocessParams | None = None) -> PreprocessResult:
    """Run the full preprocessing pipeline on a decoded image.

    Args:
        image: RGBA, RGB or greyscale uint8 array.
        params: Preprocessing parameters; defaults are quality driven.

    Returns:
        PreprocessResult with the scaled original, an aligned greyscale
        copy and the binarized image.

    Raises:
        PreprocessingError: If any step fails.
    """
    params = params or PreprocessParams()
    try:
        return _run_preprocess(image, params)
    except ScoreOCRError:
        raise
    except Exception as e:
        logger.error(f"Error in preprocessing: {str(e)}")
        raise PreprocessingError(f"Preprocessing failed: {str(e)}") from e
