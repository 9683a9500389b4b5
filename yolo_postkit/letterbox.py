from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

from .types import ImageSize, LetterboxParams, SizeLike, as_size


def round_half_away(value: float) -> int:
    """
    Round to the nearest integer with halves going away from zero (2.5 -> 3, -0.5 -> -1).

    Unlike the builtin round(), which sends halves to the even neighbour.
    """

    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


@dataclass(frozen=True)
class LetterboxGeometry:
    params: LetterboxParams
    resized: ImageSize
    # top, bottom, left, right
    border: Tuple[int, int, int, int]

    @property
    def output_size(self) -> ImageSize:
        top, bottom, left, right = self.border
        return ImageSize(self.resized.width + left + right, self.resized.height + top + bottom)


def letterbox_params(
    src_size: SizeLike,
    new_shape: Union[SizeLike, int] = (640, 640),
    auto: bool = False,
    scale_fill: bool = False,
    scaleup: bool = True,
    stride: int = 32,
) -> LetterboxGeometry:
    """
    Compute the letterbox mapping for an image of `src_size` (width, height) without
    touching any pixels.
    """

    src = as_size(src_size)
    dst = as_size(new_shape)
    if src.width <= 0 or src.height <= 0:
        raise ValueError(f"Source size must be positive, got {tuple(src)}")
    if dst.width <= 0 or dst.height <= 0:
        raise ValueError(f"Target size must be positive, got {tuple(dst)}")
    if stride < 1:
        raise ValueError(f"stride must be >= 1 (got {stride})")

    # Scale ratio (new / old)
    r = min(dst.height / src.height, dst.width / src.width)
    if not scaleup:  # only scale down
        r = min(r, 1.0)

    resized_w, resized_h = round_half_away(src.width * r), round_half_away(src.height * r)
    dw, dh = float(dst.width - resized_w), float(dst.height - resized_h)

    if auto:  # make sure padding is a multiple of stride
        dw = math.fmod(dw, stride)
        dh = math.fmod(dh, stride)
    elif scale_fill:  # stretch to fill
        resized_w, resized_h = dst.width, dst.height
        dw, dh = 0.0, 0.0
        r = dst.width / src.width

    dw /= 2
    dh /= 2

    top, bottom = round_half_away(dh - 0.1), round_half_away(dh + 0.1)
    left, right = round_half_away(dw - 0.1), round_half_away(dw + 0.1)

    return LetterboxGeometry(
        params=LetterboxParams(scale=r, pad_x=dw, pad_y=dh),
        resized=ImageSize(resized_w, resized_h),
        border=(top, bottom, left, right),
    )


def letterbox(
    image: np.ndarray,
    new_shape: Union[SizeLike, int] = (640, 640),
    color: Tuple[int, int, int] = (114, 114, 114),
    auto: bool = False,
    scale_fill: bool = False,
    scaleup: bool = True,
    stride: int = 32,
) -> Tuple[np.ndarray, LetterboxParams]:
    """
    Resize and pad image to meet stride-multiple constraints, matching common YOLO exports.

    Returns:
        padded: resized + padded image
        params: LetterboxParams(scale, pad_x, pad_y); pads are the halved per-side
            values to subtract before dividing by scale when mapping back
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")

    h, w = image.shape[:2]
    geom = letterbox_params(
        (w, h),
        new_shape=new_shape,
        auto=auto,
        scale_fill=scale_fill,
        scaleup=scaleup,
        stride=stride,
    )

    # Resize
    if (w, h) != tuple(geom.resized):
        image = cv2.resize(image, tuple(geom.resized), interpolation=cv2.INTER_LINEAR)

    top, bottom, left, right = geom.border
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    return padded, geom.params
