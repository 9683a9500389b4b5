from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .types import YoloResult

Color = Tuple[int, ...]


@dataclass(frozen=True)
class PoseStyle:
    """
    Colours and skeleton for drawing 17-keypoint (COCO) poses.

    `skeleton` pairs are 1-based keypoint indices; the two index tables pick
    entries from `palette` for each limb and each keypoint.
    """

    palette: Tuple[Color, ...]
    skeleton: Tuple[Tuple[int, int], ...]
    limb_color_indices: Tuple[int, ...]
    kpt_color_indices: Tuple[int, ...]

    @property
    def limb_colors(self) -> List[Color]:
        return [self.palette[i] for i in self.limb_color_indices]

    @property
    def kpt_colors(self) -> List[Color]:
        return [self.palette[i] for i in self.kpt_color_indices]


COCO_POSE_STYLE = PoseStyle(
    palette=(
        (255, 128, 0), (255, 153, 51), (255, 178, 102), (230, 230, 0),
        (255, 153, 255), (153, 204, 255), (255, 102, 255), (255, 51, 255),
        (102, 178, 255), (51, 153, 255), (255, 153, 153), (255, 102, 102),
        (255, 51, 51), (153, 255, 153), (102, 255, 102), (51, 255, 51),
        (0, 255, 0), (0, 0, 255), (255, 0, 0), (255, 255, 255),
    ),
    skeleton=(
        (16, 14), (14, 12), (17, 15), (15, 13), (12, 13),
        (6, 12), (7, 13), (6, 7), (6, 8), (7, 9),
        (8, 10), (9, 11), (2, 3), (1, 2), (1, 3),
        (2, 4), (3, 5), (4, 6), (5, 7),
    ),
    limb_color_indices=(9, 9, 9, 9, 7, 7, 7, 0, 0, 0, 0, 0, 16, 16, 16, 16, 16, 16, 16),
    kpt_color_indices=(16, 16, 16, 16, 16, 0, 0, 0, 0, 0, 0, 9, 9, 9, 9, 9, 9),
)


def generate_random_color(num_channels: int = 3, rng: Optional[np.random.Generator] = None) -> Color:
    """
    Random colour with 1 to 3 channels; anything else is a usage error.
    """

    if num_channels < 1 or num_channels > 3:
        raise ValueError(f"Invalid number of channels: {num_channels}. Must be between 1 and 3.")
    rng = rng if rng is not None else np.random.default_rng()
    values = rng.integers(0, 256, size=num_channels)
    return tuple(int(v) for v in values)


def generate_random_colors(
    num_classes: int, num_channels: int = 3, rng: Optional[np.random.Generator] = None
) -> List[Color]:
    rng = rng if rng is not None else np.random.default_rng()
    return [generate_random_color(num_channels, rng) for _ in range(num_classes)]


def _color_for_class_id(class_id: Optional[int]) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id (OpenCV expects BGR).
    """

    if class_id is None:
        return (0, 255, 255)

    # Small deterministic palette, then fallback to a seeded RNG for larger IDs.
    palette = [
        (255, 56, 56),
        (255, 157, 151),
        (255, 112, 31),
        (255, 178, 29),
        (207, 210, 49),
        (72, 249, 10),
        (146, 204, 23),
        (61, 219, 134),
        (26, 147, 52),
        (0, 212, 187),
        (44, 153, 168),
        (0, 194, 255),
        (52, 69, 147),
        (100, 115, 255),
        (0, 24, 236),
        (132, 56, 255),
        (82, 0, 133),
        (203, 56, 255),
        (255, 149, 200),
        (255, 55, 199),
    ]
    if 0 <= class_id < len(palette):
        return palette[class_id]

    rng = np.random.default_rng(int(class_id))
    bgr = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def _draw_keypoints(cv2, out: np.ndarray, keypoints: np.ndarray, style: PoseStyle, kpt_conf: float, radius: int) -> None:
    h, w = out.shape[:2]
    kpts = np.asarray(keypoints).reshape(-1, 3)
    is_pose = kpts.shape[0] == len(style.kpt_color_indices)
    kpt_colors = style.kpt_colors

    def visible(i: int) -> bool:
        x, y, conf = kpts[i]
        return conf >= kpt_conf and 0 <= int(x) < w and 0 <= int(y) < h

    for i in range(kpts.shape[0]):
        if not visible(i):
            continue
        color = kpt_colors[i] if is_pose else (0, 0, 255)
        cv2.circle(out, (int(kpts[i, 0]), int(kpts[i, 1])), radius, color, -1, lineType=cv2.LINE_AA)

    # Skeleton lines only for the 17-keypoint layout.
    if not is_pose:
        return
    for (a, b), color in zip(style.skeleton, style.limb_colors):
        i1, i2 = a - 1, b - 1
        if not (visible(i1) and visible(i2)):
            continue
        p1 = (int(kpts[i1, 0]), int(kpts[i1, 1]))
        p2 = (int(kpts[i2, 0]), int(kpts[i2, 1]))
        cv2.line(out, p1, p2, color, 2, lineType=cv2.LINE_AA)


def draw_results(
    image_bgr: np.ndarray,
    results: Iterable[YoloResult],
    *,
    class_names: Optional[Dict[int, str]] = None,
    colors: Optional[Sequence[Color]] = None,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.6,
    font_thickness: int = 2,
    mask_alpha: float = 0.4,
    pose_style: PoseStyle = COCO_POSE_STYLE,
    kpt_conf: float = 0.5,
    kpt_radius: int = 5,
) -> np.ndarray:
    """
    Draw boxes, labels, masks and keypoints on an OpenCV BGR image and return a copy.

    Args:
        image_bgr: input image in BGR (H, W, 3).
        results: iterable of YoloResult in original image coordinates.
        class_names: optional mapping {class_id: class_name}.
        colors: optional per-class colours indexed by class id; falls back to a
            deterministic palette.
        mask_alpha: weight of the mask overlay when blending.
        kpt_conf: keypoints below this confidence are not drawn.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_results(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    results = list(results)
    out = image_bgr.copy()
    h, w = out.shape[:2]

    def color_of(class_id: int) -> Color:
        if colors is not None and 0 <= class_id < len(colors):
            return tuple(colors[class_id])
        return _color_for_class_id(class_id)

    # Masks are blended first; boxes, labels and keypoints go on top.
    overlay = out.copy()
    has_masks = False
    for res in results:
        if res.mask is None or res.mask.size == 0:
            continue
        x0, y0 = int(res.bbox.x), int(res.bbox.y)
        region = overlay[y0 : y0 + res.mask.shape[0], x0 : x0 + res.mask.shape[1]]
        fg = res.mask[: region.shape[0], : region.shape[1]] > 0
        region[fg] = color_of(res.class_id)
        has_masks = True
    if has_masks:
        out = cv2.addWeighted(out, 1.0 - mask_alpha, overlay, mask_alpha, 0)

    for res in results:
        x1, y1, x2, y2 = res.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = color_of(res.class_id)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = class_names.get(res.class_id, str(res.class_id)) if class_names else str(res.class_id)
        if show_score:
            label = f"{label} {res.confidence:.2f}"

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Place label above the box if possible, else inside.
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

        if res.keypoints is not None and res.keypoints.size:
            _draw_keypoints(cv2, out, res.keypoints, pose_style, kpt_conf, kpt_radius)

    return out
