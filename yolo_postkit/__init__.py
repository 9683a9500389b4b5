"""
Lightweight, reusable YOLO post-processing helpers.

Turns raw detector output (detect / segment / pose exports) into results in
original image coordinates: confidence filtering, NMS, and the letterbox
forward/inverse mapping for boxes, keypoints and masks. Works with NumPy arrays
emitted by ONNX Runtime; OpenCV is used for resizing and drawing.
"""

from .types import Candidates, ImageSize, LetterboxParams, Rect, TaskType, YoloResult
from .letterbox import letterbox, letterbox_params
from .ops import InvalidCropGeometryError, clip_boxes, scale_boxes, scale_coords, scale_image
from .nms import NMSConfig, RowLayout, decode_rows, nms, non_max_suppression
from .postprocess import YoloPostprocessor, YoloPostConfig, process_mask
from .runtime import YoloPipeline, load_pipeline, find_project_root, resolve_path, LetterboxConfig
from .metadata import ModelMetadata, load_class_names
from .config import PipelineConfig, load_pipeline_config
from .visualize import COCO_POSE_STYLE, PoseStyle, draw_results, generate_random_colors

__all__ = [
    "Candidates",
    "ImageSize",
    "LetterboxParams",
    "Rect",
    "TaskType",
    "YoloResult",
    "letterbox",
    "letterbox_params",
    "InvalidCropGeometryError",
    "clip_boxes",
    "scale_boxes",
    "scale_coords",
    "scale_image",
    "NMSConfig",
    "RowLayout",
    "decode_rows",
    "nms",
    "non_max_suppression",
    "YoloPostprocessor",
    "YoloPostConfig",
    "process_mask",
    "YoloPipeline",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "LetterboxConfig",
    "ModelMetadata",
    "load_class_names",
    "PipelineConfig",
    "load_pipeline_config",
    "COCO_POSE_STYLE",
    "PoseStyle",
    "draw_results",
    "generate_random_colors",
]
