import argparse
import dataclasses
from pathlib import Path

import cv2
from tqdm import tqdm

from yolo_postkit import (
    LetterboxConfig,
    YoloPostConfig,
    draw_results,
    load_class_names,
    load_pipeline,
    load_pipeline_config,
)
from yolo_postkit.logger import setup_logger

VIDEO_SUFFIXES = {".mp4", ".avi", ".mov", ".mkv"}


def _build_pipeline(args: argparse.Namespace):
    provider = args.provider
    letterbox_cfg = None
    post_cfg = None
    if args.config:
        cfg = load_pipeline_config(Path(args.config))
        provider = args.provider or cfg.provider
        letterbox_cfg = cfg.letterbox
        post_cfg = cfg.post

    if args.imgsz is not None:
        base = letterbox_cfg or LetterboxConfig()
        letterbox_cfg = dataclasses.replace(base, new_shape=(int(args.imgsz), int(args.imgsz)))

    overrides = {}
    if args.conf is not None:
        overrides["conf_threshold"] = float(args.conf)
    if args.iou is not None:
        overrides["iou_threshold"] = float(args.iou)
    if args.task is not None:
        overrides["task"] = args.task
    if overrides:
        post_cfg = dataclasses.replace(post_cfg or YoloPostConfig(), **overrides)

    return load_pipeline(
        model_path=args.model,
        provider=provider or "cpu",
        letterbox_cfg=letterbox_cfg,
        post_cfg=post_cfg,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Run YOLO detect/segment/pose inference and visualize the results.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--model", default="checkpoints/best.onnx", help="Path to a YOLO ONNX model.")
    parser.add_argument("--config", default=None, help="Optional pipeline config JSON.")
    parser.add_argument("--metadata", default=None, help="Optional class metadata yaml (names mapping).")
    parser.add_argument("--task", default=None, choices=["detect", "segment", "pose"], help="Override model task.")
    parser.add_argument("--imgsz", type=int, default=None, help="Letterbox input size (e.g., 640).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--provider", default=None, help="ONNX Runtime provider: cpu / cuda.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized results.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video/webcam.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    parser.add_argument("--log-file", default=None, help="Optional log file path.")
    args = parser.parse_args()

    logger = setup_logger("yolo_postkit", level=args.log_level, log_file=args.log_file)

    if args.imgsz is not None and args.imgsz < 32:
        raise ValueError("--imgsz must be >= 32")
    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    pipeline = _build_pipeline(args)
    class_names = load_class_names(args.metadata) if args.metadata else pipeline.class_names

    if args.image is not None and Path(args.image).suffix.lower() not in VIDEO_SUFFIXES:
        img = cv2.imread(args.image)
        if img is None:
            raise FileNotFoundError(f"Could not read image at path: {args.image}")
        logger.info("Processing image: %s", args.image)

        results = pipeline(img)
        vis = draw_results(img, results, class_names=class_names, show_score=True)
        if args.out:
            ok = cv2.imwrite(args.out, vis)
            if not ok:
                raise RuntimeError(f"Failed to write output image: {args.out}")

        for res in results:
            name = class_names.get(res.class_id, str(res.class_id))
            logger.info("%s %.3f %s", name, res.confidence, tuple(round(v, 1) for v in res.bbox.as_xywh()))

        if args.show:
            cv2.imshow("Image Inference", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()
        return 0

    # Video/webcam path
    video_path = args.video or args.image
    if video_path is not None:
        cap = cv2.VideoCapture(video_path)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {video_path}")
        logger.info("Processing video: %s", video_path)
    else:
        cam_index = int(args.webcam)
        cap = cv2.VideoCapture(cam_index)
        if not cap.isOpened():
            raise RuntimeError(f"Could not open webcam index: {cam_index}")

    total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT)) if video_path is not None else 0
    progress = tqdm(total=total or None, unit="frame", disable=video_path is None)

    writer = None
    frame_idx = 0
    processed = 0

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                logger.info("End of video")
                break

            frame_idx += 1
            progress.update(1)
            if (frame_idx - 1) % args.every != 0:
                continue

            results = pipeline(frame)
            vis = draw_results(frame, results, class_names=class_names, show_score=True)

            if args.out and writer is None:
                fps = cap.get(cv2.CAP_PROP_FPS)
                if fps is None or fps <= 0:
                    fps = 30.0
                h, w = vis.shape[:2]
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                writer = cv2.VideoWriter(args.out, fourcc, fps, (w, h))
                if not writer.isOpened():
                    raise RuntimeError(f"Failed to open video writer: {args.out}")

            if writer is not None:
                writer.write(vis)

            if args.show:
                cv2.imshow("Video Inference", vis)
                if (cv2.waitKey(1) & 0xFF) == 27:  # ESC
                    break

            processed += 1
            logger.debug("frame=%d results=%d", frame_idx, len(results))
            if args.max_frames and processed >= args.max_frames:
                break
    finally:
        progress.close()
        cap.release()
        if writer is not None:
            writer.release()
        if args.show:
            cv2.destroyAllWindows()

    logger.info("Processed %d frames", processed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
