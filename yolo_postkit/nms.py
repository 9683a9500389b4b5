from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .types import Candidates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowLayout:
    """
    Column offsets of one raw prediction row: [cx, cy, w, h, scores..., extra...].
    """

    num_classes: int
    row_width: int

    def __post_init__(self) -> None:
        if self.num_classes < 1:
            raise ValueError(f"num_classes must be >= 1 (got {self.num_classes})")
        if self.row_width < 4 + self.num_classes:
            raise ValueError(
                f"row_width={self.row_width} is too small for 4 box values + "
                f"{self.num_classes} class scores (need >= {4 + self.num_classes})"
            )

    @property
    def box(self) -> slice:
        return slice(0, 4)

    @property
    def scores(self) -> slice:
        return slice(4, 4 + self.num_classes)

    @property
    def extra(self) -> slice:
        return slice(4 + self.num_classes, self.row_width)

    @property
    def extra_channels(self) -> int:
        return self.row_width - 4 - self.num_classes


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    # None keeps every survivor.
    max_detections: Optional[int] = None


def to_rows(preds: np.ndarray, row_width: int) -> np.ndarray:
    """
    Bring a single-image model output into (rows, row_width) layout.

    Handles a leading batch axis of 1 and the channels-first (row_width, anchors)
    layout that Ultralytics exports emit.
    """

    p = np.asarray(preds)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ValueError(f"Unsupported YOLO output shape: {p.shape}")

    if p.shape[1] == row_width:
        return p
    if p.shape[0] == row_width:
        return p.T
    raise ValueError(f"Output shape {p.shape} does not contain a dimension of row_width={row_width}")


def decode_rows(rows: np.ndarray, layout: RowLayout, conf_threshold: float) -> Candidates:
    """
    Confidence-filter raw rows and convert their boxes to xywh.

    A row is kept only when its best class score is strictly greater than
    `conf_threshold`, compared in float64: a float32 score of 0.3 (0.30000001...)
    passes a 0.3 threshold.
    """

    rows = np.asarray(rows)
    if rows.ndim != 2 or rows.shape[1] != layout.row_width:
        raise ValueError(f"Expected rows of shape (N, {layout.row_width}), got {rows.shape}")
    if not np.issubdtype(rows.dtype, np.floating):
        rows = rows.astype(np.float32)

    class_scores = rows[:, layout.scores]
    class_ids = np.argmax(class_scores, axis=1)
    max_conf = class_scores[np.arange(class_scores.shape[0]), class_ids]

    keep = max_conf.astype(np.float64) > float(conf_threshold)
    if not np.any(keep):
        return Candidates.empty(layout.extra_channels)

    kept = rows[keep]
    cx, cy, w, h = kept[:, 0], kept[:, 1], kept[:, 2], kept[:, 3]
    # +0.5 centre/size correction on all four fields
    left = np.maximum(cx - 0.5 * w + 0.5, 0)
    top = np.maximum(cy - 0.5 * h + 0.5, 0)
    boxes = np.stack([left, top, w + 0.5, h + 0.5], axis=1)

    return Candidates(
        boxes=boxes,
        scores=max_conf[keep],
        class_ids=class_ids[keep].astype(np.int64),
        extras=kept[:, layout.extra].copy(),
    )


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xywh and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    A box is suppressed when its IoU with an already selected box is strictly
    greater than `cfg.iou_threshold`. Equal scores keep their input order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = np.asarray(boxes, dtype=np.float64)
    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = x1 + boxes[:, 2]
    y2 = y1 + boxes[:, 3]
    areas = np.maximum(boxes[:, 2], 0.0) * np.maximum(boxes[:, 3], 0.0)

    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(int(i))

        rest = order[1:]
        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[rest] - inter
        iou = inter / np.maximum(union, 1e-6)

        order = rest[iou <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def class_aware_nms(boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Run NMS separately per class, then merge survivors by descending score.
    """

    kept: List[int] = []
    for cls in np.unique(class_ids):
        idx = np.where(class_ids == cls)[0]
        keep_local = nms(boxes[idx], scores[idx], NMSConfig(iou_threshold=cfg.iou_threshold))
        kept.extend(idx[keep_local].tolist())

    if not kept:
        return np.empty((0,), dtype=np.int64)

    merged = np.sort(np.array(kept, dtype=np.int64))
    merged = merged[np.argsort(-np.asarray(scores, dtype=np.float64)[merged], kind="stable")]
    if cfg.max_detections is not None:
        merged = merged[: cfg.max_detections]
    return merged


def non_max_suppression(
    preds: np.ndarray,
    num_classes: int,
    row_width: int,
    conf_threshold: float,
    iou_threshold: float,
    max_detections: Optional[int] = None,
    class_agnostic: bool = True,
    classes: Optional[Sequence[int]] = None,
) -> Candidates:
    """
    Decode a raw (rows, 4 + num_classes + extra) tensor and suppress overlapping boxes.

    Returns the surviving candidates in network input space, in selection order.
    An empty result is a valid "nothing detected" outcome.

    Args:
        classes: optional class ids to keep; applied before NMS
    """

    layout = RowLayout(num_classes=num_classes, row_width=row_width)
    rows = to_rows(preds, row_width)
    candidates = decode_rows(rows, layout, conf_threshold)
    if classes is not None and len(candidates) > 0:
        candidates = candidates.take(np.isin(candidates.class_ids, np.asarray(list(classes))))
    if len(candidates) == 0:
        logger.debug("No candidates above conf_threshold=%.3f (%d rows)", conf_threshold, rows.shape[0])
        return candidates

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_detections)
    if class_agnostic:
        keep = nms(candidates.boxes, candidates.scores, cfg)
    else:
        keep = class_aware_nms(candidates.boxes, candidates.scores, candidates.class_ids, cfg)

    logger.debug("NMS kept %d of %d candidates (%d rows)", keep.size, len(candidates), rows.shape[0])
    return candidates.take(keep)
