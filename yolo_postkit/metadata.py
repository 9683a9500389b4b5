from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .types import ImageSize, TaskType

logger = logging.getLogger(__name__)


def load_class_names(metadata_path: str) -> Dict[int, str]:
    """
    Load class names from the lightweight `metadata.yaml` format:

        names:
          0: person
          1: bicycle
          ...

    This function intentionally avoids adding a PyYAML dependency.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


def _literal(raw: Optional[str], key: str) -> Any:
    if raw is None:
        return None
    try:
        return ast.literal_eval(raw)
    except (ValueError, SyntaxError) as exc:
        raise ValueError(f"Could not parse model metadata {key!r}: {raw!r}") from exc


@dataclass(frozen=True)
class ModelMetadata:
    """
    The bits of an exported model's custom metadata map that postprocessing needs.
    """

    names: Dict[int, str] = field(default_factory=dict)
    task: TaskType = TaskType.DETECT
    stride: int = 32
    imgsz: Optional[ImageSize] = None
    kpt_shape: Optional[Tuple[int, int]] = None

    @property
    def num_classes(self) -> int:
        return len(self.names)

    @classmethod
    def from_custom_map(cls, meta: Mapping[str, str]) -> "ModelMetadata":
        """
        Parse the string-valued map written by Ultralytics exporters, e.g.

            {"task": "segment", "stride": "32", "imgsz": "[640, 640]",
             "names": "{0: 'person', 1: 'bicycle'}", "kpt_shape": "[17, 3]"}

        Missing keys fall back to defaults; malformed values raise ValueError.
        """

        names_raw = _literal(meta.get("names"), "names") or {}
        if not isinstance(names_raw, dict):
            raise ValueError(f"Model metadata 'names' must be a dict, got {type(names_raw).__name__}")
        names = {int(k): str(v) for k, v in names_raw.items()}

        task = TaskType.parse(meta.get("task", TaskType.DETECT.value))
        stride = int(meta.get("stride", 32))

        imgsz = None
        imgsz_raw = _literal(meta.get("imgsz"), "imgsz")
        if imgsz_raw is not None:
            if isinstance(imgsz_raw, int):
                imgsz = ImageSize(imgsz_raw, imgsz_raw)
            else:
                # exporters write [height, width]
                h, w = imgsz_raw
                imgsz = ImageSize(int(w), int(h))

        kpt_shape = None
        kpt_raw = _literal(meta.get("kpt_shape"), "kpt_shape")
        if kpt_raw is not None:
            count, dims = kpt_raw
            kpt_shape = (int(count), int(dims))

        logger.debug("Model metadata: task=%s classes=%d imgsz=%s", task.value, len(names), imgsz)
        return cls(names=names, task=task, stride=stride, imgsz=imgsz, kpt_shape=kpt_shape)
