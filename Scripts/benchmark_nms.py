from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from typing import List

import numpy as np

from yolo_postkit import non_max_suppression
from yolo_postkit.logger import setup_logger


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def _summarize_ms(values_s: List[float]) -> TimingSummary:
    ms_sorted = sorted(v * 1000.0 for v in values_s)
    return TimingSummary(
        n=len(ms_sorted),
        mean_ms=float(statistics.fmean(ms_sorted)) if ms_sorted else 0.0,
        p50_ms=_percentile(ms_sorted, 50.0) if ms_sorted else 0.0,
        p90_ms=_percentile(ms_sorted, 90.0) if ms_sorted else 0.0,
        p95_ms=_percentile(ms_sorted, 95.0) if ms_sorted else 0.0,
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def make_synthetic_preds(rows: int, num_classes: int, extra: int, imgsz: int, seed: int = 0) -> np.ndarray:
    """
    Raw tensor in the channels-first export layout: (1, 4 + num_classes + extra, rows).
    """

    rng = np.random.default_rng(seed)
    cxcy = rng.uniform(0, imgsz, size=(rows, 2))
    wh = rng.uniform(5, 120, size=(rows, 2))
    # Mostly low scores, like a real head output.
    scores = rng.beta(0.5, 6.0, size=(rows, num_classes))
    tail = rng.normal(0.0, 1.0, size=(rows, extra))
    data = np.concatenate([cxcy, wh, scores, tail], axis=1).astype(np.float32)
    return data.T[None, ...]


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Benchmark raw-tensor decode + NMS latency (class-agnostic vs per-class)."
    )
    parser.add_argument("--rows", type=int, default=8400, help="Number of prediction rows (anchors).")
    parser.add_argument("--classes", type=int, default=80, help="Number of classes.")
    parser.add_argument("--extra", type=int, default=0, help="Extra channels per row (e.g. 32 mask coefficients).")
    parser.add_argument("--imgsz", type=int, default=640, help="Synthetic input size for box centres.")
    parser.add_argument("--conf", type=float, default=0.25, help="Confidence threshold (pre-NMS).")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--max-det", type=int, default=300, help="Max detections to keep after NMS.")
    parser.add_argument("--warmup", type=int, default=10, help="Warmup iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=100, help="Recorded iterations.")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for the synthetic tensor.")
    args = parser.parse_args()

    logger = setup_logger("benchmark_nms")

    if args.rows < 1:
        raise ValueError("--rows must be >= 1")
    if args.classes < 1:
        raise ValueError("--classes must be >= 1")
    if args.extra < 0:
        raise ValueError("--extra must be >= 0")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")
    if args.max_det < 1:
        raise ValueError("--max-det must be >= 1")

    preds = make_synthetic_preds(args.rows, args.classes, args.extra, args.imgsz, seed=args.seed)
    row_width = 4 + args.classes + args.extra

    t_agnostic: List[float] = []
    t_per_class: List[float] = []
    kept_agnostic = kept_per_class = 0

    for i in range(args.warmup + args.repeats):
        t0 = time.perf_counter()
        a = non_max_suppression(
            preds, args.classes, row_width, args.conf, args.iou, max_detections=args.max_det, class_agnostic=True
        )
        t1 = time.perf_counter()
        b = non_max_suppression(
            preds, args.classes, row_width, args.conf, args.iou, max_detections=args.max_det, class_agnostic=False
        )
        t2 = time.perf_counter()

        if i < args.warmup:
            continue
        t_agnostic.append(t1 - t0)
        t_per_class.append(t2 - t1)
        kept_agnostic, kept_per_class = len(a), len(b)

    logger.info(_format_summary("decode_nms_agnostic", _summarize_ms(t_agnostic)))
    logger.info(_format_summary("decode_nms_per_class", _summarize_ms(t_per_class)))
    logger.info("rows=%d kept_agnostic=%d kept_per_class=%d", args.rows, kept_agnostic, kept_per_class)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
