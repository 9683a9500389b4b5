from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .letterbox import letterbox
from .metadata import ModelMetadata
from .postprocess import YoloPostConfig, YoloPostprocessor
from .types import ImageSize, LetterboxParams, TaskType, YoloResult


PathLike = Union[str, Path]
InferOutput = Union[np.ndarray, Sequence[np.ndarray]]

logger = logging.getLogger(__name__)


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.

    Useful when models live in `<root>/models` and scripts run from anywhere below it.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, else the project root.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class LetterboxConfig:
    # (width, height)
    new_shape: Tuple[int, int] = (640, 640)
    color: Tuple[int, int, int] = (114, 114, 114)
    auto: bool = False
    scale_fill: bool = False
    scaleup: bool = True
    stride: int = 32

    def __post_init__(self) -> None:
        if isinstance(self.new_shape, int):
            object.__setattr__(self, "new_shape", (self.new_shape, self.new_shape))
        if len(self.new_shape) != 2 or min(self.new_shape) < 1:
            raise ValueError(f"new_shape must be a positive (width, height), got {self.new_shape}")
        if self.stride < 1:
            raise ValueError(f"stride must be >= 1 (got {self.stride})")


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    orig_size: ImageSize
    input_size: ImageSize
    params: LetterboxParams


def split_outputs(outputs: InferOutput) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Separate the detection output from the optional mask prototype output.
    """

    if isinstance(outputs, (list, tuple)):
        if not outputs:
            raise ValueError("Inference returned no outputs.")
        protos = outputs[1] if len(outputs) > 1 else None
        return np.asarray(outputs[0]), protos
    return np.asarray(outputs), None


class YoloPipeline:
    """
    Plug-and-play pipeline: preprocess (letterbox) -> inference -> postprocess.

    The pipeline expects BGR images (OpenCV-style) as `np.ndarray` and returns
    a list of `YoloResult` in original image coordinates.
    """

    def __init__(
        self,
        infer_fn: Callable[[np.ndarray], InferOutput],
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(),
        post_cfg: YoloPostConfig = YoloPostConfig(),
        class_names: Optional[Dict[int, str]] = None,
    ):
        self._infer_fn = infer_fn
        self.backend = backend
        self.backend_name = backend_name
        self.letterbox_cfg = letterbox_cfg
        self.post = YoloPostprocessor(post_cfg)
        self.class_names: Dict[int, str] = dict(class_names or {})

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        orig_h, orig_w = image_bgr.shape[:2]
        img, params = letterbox(
            image_bgr,
            new_shape=self.letterbox_cfg.new_shape,
            color=self.letterbox_cfg.color,
            auto=self.letterbox_cfg.auto,
            scale_fill=self.letterbox_cfg.scale_fill,
            scaleup=self.letterbox_cfg.scaleup,
            stride=self.letterbox_cfg.stride,
        )
        in_h, in_w = img.shape[:2]

        # BGR -> RGB, normalize, HWC -> CHW, add batch
        blob = img[:, :, ::-1].astype(np.float32) / 255.0
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])

        return PreprocessResult(
            blob=blob,
            orig_size=ImageSize(orig_w, orig_h),
            input_size=ImageSize(in_w, in_h),
            params=params,
        )

    def postprocess(self, outputs: InferOutput, prep: PreprocessResult) -> List[YoloResult]:
        preds, protos = split_outputs(outputs)
        return self.post.process(
            preds,
            orig_size=prep.orig_size,
            input_size=prep.input_size,
            params=prep.params,
            protos=protos,
        )

    def __call__(self, image_bgr: np.ndarray) -> List[YoloResult]:
        prep = self.preprocess(image_bgr)
        outputs = self._infer_fn(prep.blob)
        return self.postprocess(outputs, prep)


def _post_cfg_from_metadata(post_cfg: Optional[YoloPostConfig], meta: ModelMetadata) -> YoloPostConfig:
    if post_cfg is None:
        return YoloPostConfig(
            task=meta.task,
            num_classes=meta.num_classes or None,
            kpt_shape=meta.kpt_shape or (17, 3),
        )

    updates = {}
    task = post_cfg.task
    if task is None:
        task = updates["task"] = meta.task
    elif task is not meta.task:
        logger.warning("Configured task %r differs from model metadata task %r", task.value, meta.task.value)
    if post_cfg.num_classes is None and meta.num_classes:
        updates["num_classes"] = meta.num_classes
    if task is TaskType.POSE and meta.kpt_shape is not None:
        updates["kpt_shape"] = meta.kpt_shape
    return dataclasses.replace(post_cfg, **updates) if updates else post_cfg


def load_pipeline(
    model_path: PathLike,
    *,
    root: Optional[PathLike] = "auto",
    letterbox_cfg: Optional[LetterboxConfig] = None,
    post_cfg: Optional[YoloPostConfig] = None,
    provider: Optional[str] = "cpu",
    input_name: Optional[str] = None,
) -> YoloPipeline:
    """
    Create a plug-and-play ONNX Runtime pipeline for a model on disk.

    Typical usage:
        pipe = load_pipeline("models/yolov8n-seg.onnx")  # resolves from project root by default

    Task, class count, keypoint layout, input size and stride are read from the
    model's metadata unless set explicitly in `post_cfg` / `letterbox_cfg`.

    Args:
        model_path: path to an .onnx file; relative paths resolve against project root by default
        root: base directory for resolving relative model paths ("auto" uses best-effort project root)
        provider: "cpu" or "cuda"
    """

    resolved = resolve_path(model_path, root=root)
    if resolved.suffix.lower() != ".onnx":
        raise ValueError(f"Only ONNX models are supported (got '{resolved.suffix}').")

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    ort_backend = OnnxRuntimeBackend(
        resolved,
        OnnxRuntimeBackendConfig(provider=provider, input_name=input_name),
    )
    meta = ModelMetadata.from_custom_map(ort_backend.metadata)

    if letterbox_cfg is None:
        letterbox_cfg = LetterboxConfig(
            new_shape=tuple(meta.imgsz) if meta.imgsz is not None else (640, 640),
            stride=meta.stride,
        )

    return YoloPipeline(
        ort_backend.infer,
        backend=ort_backend,
        backend_name="onnxruntime",
        letterbox_cfg=letterbox_cfg,
        post_cfg=_post_cfg_from_metadata(post_cfg, meta),
        class_names=meta.names,
    )
