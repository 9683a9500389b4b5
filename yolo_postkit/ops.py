"""
Coordinate mapping between the letterboxed network input and the original image.

Boxes are xywh (top-left corner + size). Shapes are (width, height).
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .letterbox import round_half_away
from .types import LetterboxParams, SizeLike, as_size


class InvalidCropGeometryError(ValueError):
    """
    Raised when the padding to strip from a mask leaves no (or a negative) area.
    """


def clip_boxes(boxes: np.ndarray, shape: SizeLike) -> np.ndarray:
    """
    Clamp xywh boxes in place so they lie inside [0, width] x [0, height].

    x/y are clamped first, then width/height are limited to what is left of the
    image from the clamped corner. Never raises for out-of-range input.
    """

    w, h = as_size(shape)
    boxes[..., 0] = np.clip(boxes[..., 0], 0, w)
    boxes[..., 1] = np.clip(boxes[..., 1], 0, h)
    boxes[..., 2] = np.clip(boxes[..., 2], 0, w - boxes[..., 0])
    boxes[..., 3] = np.clip(boxes[..., 3], 0, h - boxes[..., 1])
    return boxes


def _box_ratio_pad(img1_shape: SizeLike, img0_shape: SizeLike) -> Tuple[float, float, float]:
    w1, h1 = as_size(img1_shape)
    w0, h0 = as_size(img0_shape)
    gain = min(h1 / h0, w1 / w0)
    pad_x = round_half_away((w1 - w0 * gain) / 2 - 0.1)
    pad_y = round_half_away((h1 - h0 * gain) / 2 - 0.1)
    return gain, float(pad_x), float(pad_y)


def scale_boxes(
    img1_shape: SizeLike,
    boxes: np.ndarray,
    img0_shape: SizeLike,
    params: Optional[LetterboxParams] = None,
    padding: bool = True,
) -> np.ndarray:
    """
    Rescale xywh boxes from `img1_shape` (network input) to `img0_shape` (original image).

    Args:
        img1_shape: (width, height) the boxes currently live in
        boxes: (N, 4) or (4,) xywh boxes; not modified
        img0_shape: (width, height) to map into
        params: letterbox parameters from preprocessing; None recomputes them
            from the two shapes
        padding: subtract the letterbox padding before scaling

    Returns:
        New float32 array of clipped boxes.
    """

    if params is None:
        gain, pad_x, pad_y = _box_ratio_pad(img1_shape, img0_shape)
    else:
        gain, pad_x, pad_y = params.scale, params.pad_x, params.pad_y

    out = np.array(boxes, dtype=np.float32)
    if out.shape[-1] != 4:
        raise ValueError(f"Expected boxes with 4 columns (x, y, w, h), got shape {out.shape}")

    if padding:
        out[..., 0] -= pad_x
        out[..., 1] -= pad_y
    out[..., :4] /= gain
    return clip_boxes(out, img0_shape)


def scale_coords(
    img1_shape: SizeLike,
    coords: np.ndarray,
    img0_shape: SizeLike,
    params: Optional[LetterboxParams] = None,
) -> np.ndarray:
    """
    Rescale keypoints stored as (x, y, conf) triples; the confidence column is left as is.

    Accepts a flat stride-3 vector or any array whose trailing dimension is 3.
    Coordinates are clamped to [0, width - 1] and [0, height - 1].
    """

    w1, h1 = as_size(img1_shape)
    w0, h0 = as_size(img0_shape)
    if params is None:
        gain = min(w1 / w0, h1 / h0)
        pad_x = (w1 - w0 * gain) / 2
        pad_y = (h1 - h0 * gain) / 2
    else:
        gain, pad_x, pad_y = params.scale, params.pad_x, params.pad_y

    out = np.array(coords, dtype=np.float32)
    if out.size % 3 != 0:
        raise ValueError(f"Keypoint data must hold (x, y, conf) triples, got {out.size} values")

    flat = out.reshape(-1, 3)
    flat[:, 0] = np.clip((flat[:, 0] - pad_x) / gain, 0, w0 - 1)
    flat[:, 1] = np.clip((flat[:, 1] - pad_y) / gain, 0, h0 - 1)
    return out


def scale_image(
    resized_mask: np.ndarray,
    im0_shape: SizeLike,
    params: Optional[LetterboxParams] = None,
) -> np.ndarray:
    """
    Strip the letterbox padding from a mask and resize it to `im0_shape`.

    When the mask already has the target size it is returned unchanged (same
    object); callers should not depend on it being a copy.
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for scale_image(). Install with `pip install opencv-python`.") from e

    w0, h0 = as_size(im0_shape)
    mh, mw = resized_mask.shape[:2]
    if (mw, mh) == (w0, h0):
        return resized_mask

    if params is None:
        gain = min(mh / h0, mw / w0)
        pad_x = (mw - w0 * gain) / 2
        pad_y = (mh - h0 * gain) / 2
    else:
        pad_x, pad_y = params.pad_x, params.pad_y

    left, top = int(pad_x), int(pad_y)
    crop_w, crop_h = mw - left * 2, mh - top * 2
    if pad_x < 0 or pad_y < 0 or crop_w <= 0 or crop_h <= 0:
        raise InvalidCropGeometryError(
            f"invalid crop geometry: pad ({pad_x:.2f}, {pad_y:.2f}) leaves "
            f"{crop_w}x{crop_h} of a {mw}x{mh} mask"
        )

    clipped = np.ascontiguousarray(resized_mask[top : top + crop_h, left : left + crop_w])
    return cv2.resize(clipped, (w0, h0), interpolation=cv2.INTER_LINEAR)
