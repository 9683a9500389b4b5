from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .nms import non_max_suppression
from .ops import scale_boxes, scale_coords, scale_image
from .types import Candidates, ImageSize, LetterboxParams, Rect, SizeLike, TaskType, YoloResult, as_size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class YoloPostConfig:
    """
    Configuration for YOLO post processing.
    """

    # None means "not configured": the model metadata decides, detect otherwise.
    task: Optional[Union[TaskType, str]] = None
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    # Binarisation cutoff for mask probabilities (segment task only).
    mask_threshold: float = 0.5
    # None keeps every NMS survivor.
    max_detections: Optional[int] = None
    # If False, runs per-class NMS then merges results by score.
    class_agnostic_nms: bool = True
    # Optional list of class IDs to keep; None keeps all.
    class_ids: Optional[Sequence[int]] = None
    # (keypoints per detection, values per keypoint) for the pose task.
    kpt_shape: Tuple[int, int] = (17, 3)
    # None derives it from the output width (and mask/keypoint channel count).
    num_classes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.task is not None:
            object.__setattr__(self, "task", TaskType.parse(self.task))
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError(f"conf_threshold must be in [0, 1] (got {self.conf_threshold})")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be in [0, 1] (got {self.iou_threshold})")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError(f"max_detections must be >= 1 (got {self.max_detections})")
        if len(self.kpt_shape) != 2 or self.kpt_shape[0] < 1 or self.kpt_shape[1] not in (2, 3):
            raise ValueError(f"kpt_shape must be (count, 2 or 3), got {self.kpt_shape}")
        if self.num_classes is not None and self.num_classes < 1:
            raise ValueError(f"num_classes must be >= 1 (got {self.num_classes})")


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -88.0, 88.0)))


def process_mask(protos: np.ndarray, coeffs: np.ndarray) -> np.ndarray:
    """
    Combine per-detection mask coefficients with the prototype masks.

    Args:
        protos: (nm, mh, mw) prototypes, optionally with a leading batch axis of 1
        coeffs: (N, nm) coefficients taken from the tail of each detection row

    Returns:
        (N, mh, mw) float32 mask probabilities on the prototype grid.
    """

    p = np.asarray(protos, dtype=np.float32)
    if p.ndim == 4:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported for prototypes (got shape {p.shape}).")
        p = p[0]
    if p.ndim != 3:
        raise ValueError(f"Expected prototypes shaped (nm, mh, mw), got {p.shape}")

    nm, mh, mw = p.shape
    c = np.asarray(coeffs, dtype=np.float32).reshape(-1, nm)
    masks = c @ p.reshape(nm, -1)
    return _sigmoid(masks).reshape(-1, mh, mw).astype(np.float32)


class YoloPostprocessor:
    """
    Turn one image's raw YOLO output into `YoloResult`s in original image coordinates.

    Supported raw layouts (per image, optional leading batch axis of 1):
    - (rows, 4 + C + extra): [cx, cy, w, h, class_scores..., extra...]
    - (4 + C + extra, rows): the channels-first layout of Ultralytics exports

    Without `cfg.num_classes`, a batched output takes its short axis as the row
    width and a bare 2-D tensor its last axis.

    `extra` is read according to `cfg.task` (detect when unset): nothing for detect, mask
    coefficients for segment (paired with the prototype output), keypoints for pose.
    """

    def __init__(self, cfg: YoloPostConfig):
        self.cfg = cfg

    def process(
        self,
        preds: np.ndarray,
        orig_size: SizeLike,
        input_size: SizeLike,
        params: Optional[LetterboxParams] = None,
        protos: Optional[np.ndarray] = None,
    ) -> List[YoloResult]:
        """
        Decode, suppress and map detections back to the original image.

        Args:
            preds: primary model output for a single image
            orig_size: (width, height) of the original image
            input_size: (width, height) of the network input the preds refer to
            params: letterbox parameters used in preprocessing; None recomputes
                them from the two sizes
            protos: mask prototypes, required for the segment task
        """

        orig = as_size(orig_size)
        net = as_size(input_size)
        task = TaskType.parse(self.cfg.task) if self.cfg.task is not None else TaskType.DETECT

        if task is TaskType.SEGMENT and protos is None:
            raise ValueError("Segmentation postprocess needs the mask prototype output (protos).")

        extra_channels = self._extra_channels(task, protos)
        num_classes, row_width = self._layout_for(preds, extra_channels)

        survivors = non_max_suppression(
            preds,
            num_classes=num_classes,
            row_width=row_width,
            conf_threshold=self.cfg.conf_threshold,
            iou_threshold=self.cfg.iou_threshold,
            max_detections=self.cfg.max_detections,
            class_agnostic=self.cfg.class_agnostic_nms,
            classes=self.cfg.class_ids,
        )
        if len(survivors) == 0:
            return []

        boxes = scale_boxes(net, survivors.boxes, orig, params=params)
        results = [
            YoloResult(
                bbox=Rect(float(x), float(y), float(w), float(h)),
                confidence=float(score),
                class_id=int(cls_id),
            )
            for (x, y, w, h), score, cls_id in zip(boxes, survivors.scores, survivors.class_ids)
        ]

        if task is TaskType.SEGMENT:
            self._attach_masks(results, survivors, protos, net, orig, params)
        elif task is TaskType.POSE:
            self._attach_keypoints(results, survivors, net, orig, params)

        logger.debug("Assembled %d %s results", len(results), task.value)
        return results

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _extra_channels(self, task: TaskType, protos: Optional[np.ndarray]) -> int:
        if task is TaskType.SEGMENT:
            p = np.asarray(protos)
            return int(p.shape[-3]) if p.ndim >= 3 else 0
        if task is TaskType.POSE:
            count, dims = self.cfg.kpt_shape
            return int(count * dims)
        return 0

    def _layout_for(self, preds: np.ndarray, extra_channels: int) -> Tuple[int, int]:
        if self.cfg.num_classes is not None:
            return self.cfg.num_classes, 4 + self.cfg.num_classes + extra_channels

        shape = np.shape(preds)
        batched = len(shape) == 3
        if batched:
            shape = shape[1:]
        if len(shape) != 2:
            raise ValueError(f"Unsupported YOLO output shape: {np.shape(preds)}")

        if batched:
            # Exported heads: the channel axis is the short one, rows/anchors the long one.
            row_width = int(min(shape))
        else:
            min_width = 4 + extra_channels + 1
            # A bare 2-D tensor is read as (rows, row_width).
            row_width = int(shape[1]) if shape[1] >= min_width else int(shape[0])
        num_classes = row_width - 4 - extra_channels
        if num_classes < 1:
            raise ValueError(
                f"Cannot derive num_classes from output shape {np.shape(preds)} with "
                f"{extra_channels} extra channels; set YoloPostConfig.num_classes."
            )
        return num_classes, row_width

    def _attach_masks(
        self,
        results: List[YoloResult],
        survivors: Candidates,
        protos: np.ndarray,
        net: ImageSize,
        orig: ImageSize,
        params: Optional[LetterboxParams],
    ) -> None:
        nm, mh, mw = np.asarray(protos).shape[-3:]
        if survivors.extras.shape[1] != nm:
            raise ValueError(
                f"Got {survivors.extras.shape[1]} mask coefficients per detection but {nm} prototype channels"
            )

        # Letterbox padding expressed on the prototype grid.
        proto_params = None
        if params is not None:
            gx, gy = mw / net.width, mh / net.height
            proto_params = LetterboxParams(
                scale=params.scale * gx, pad_x=params.pad_x * gx, pad_y=params.pad_y * gy
            )

        probs = process_mask(protos, survivors.extras)
        for res, prob in zip(results, probs):
            full = scale_image(prob, orig, params=proto_params)
            x0, y0 = int(res.bbox.x), int(res.bbox.y)
            w, h = int(res.bbox.width), int(res.bbox.height)
            crop = full[y0 : y0 + h, x0 : x0 + w]
            res.mask = (crop > self.cfg.mask_threshold).astype(np.uint8) * 255

    def _attach_keypoints(
        self,
        results: List[YoloResult],
        survivors: Candidates,
        net: ImageSize,
        orig: ImageSize,
        params: Optional[LetterboxParams],
    ) -> None:
        count, dims = self.cfg.kpt_shape
        if survivors.extras.shape[1] != count * dims:
            raise ValueError(
                f"Got {survivors.extras.shape[1]} keypoint values per detection, "
                f"expected {count * dims} for kpt_shape={self.cfg.kpt_shape}"
            )

        kpts = survivors.extras.reshape(-1, count, dims).astype(np.float32)
        if dims == 2:
            # No visibility channel in the export; treat every point as confident.
            kpts = np.concatenate([kpts, np.ones((kpts.shape[0], count, 1), dtype=np.float32)], axis=2)

        mapped = scale_coords(net, kpts, orig, params=params)
        for res, points in zip(results, mapped):
            res.keypoints = points
