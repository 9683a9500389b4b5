from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .postprocess import YoloPostConfig
from .runtime import LetterboxConfig


@dataclass(frozen=True)
class PipelineConfig:
    """
    Pipeline settings loaded from JSON. A missing section means "take it from the
    model metadata" when the pipeline is built with `load_pipeline`.
    """

    schema_version: int = 1
    provider: str = "cpu"
    letterbox: Optional[LetterboxConfig] = None
    post: Optional[YoloPostConfig] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("pipeline config schema_version must be 1")


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_number(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_bool(payload: Dict[str, Any], key: str) -> Optional[bool]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value


def _int_tuple(payload: Dict[str, Any], key: str, length: int) -> Optional[Tuple[int, ...]]:
    value = payload.get(key)
    if value is None:
        return None
    if (
        not isinstance(value, list)
        or len(value) != length
        or any(isinstance(v, bool) or not isinstance(v, int) for v in value)
    ):
        raise ValueError(f"{key} must be a list of {length} integers")
    return tuple(int(v) for v in value)


def _check_keys(section: str, payload: Any, allowed: set) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError(f"{section} must be a JSON object")
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown {section} keys: {unknown}")
    return payload


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _parse_letterbox(payload: Any) -> LetterboxConfig:
    payload = _check_keys("letterbox", payload, {"new_shape", "color", "auto", "scale_fill", "scaleup", "stride"})
    values = {
        "new_shape": _int_tuple(payload, "new_shape", 2),
        "color": _int_tuple(payload, "color", 3),
        "auto": _optional_bool(payload, "auto"),
        "scale_fill": _optional_bool(payload, "scale_fill"),
        "scaleup": _optional_bool(payload, "scaleup"),
        "stride": _optional_int(payload, "stride"),
    }
    return LetterboxConfig(**_drop_none(values))


def _parse_postprocess(payload: Any) -> YoloPostConfig:
    payload = _check_keys(
        "postprocess",
        payload,
        {
            "task",
            "conf_threshold",
            "iou_threshold",
            "mask_threshold",
            "max_detections",
            "class_agnostic_nms",
            "class_ids",
            "kpt_shape",
            "num_classes",
        },
    )
    task = payload.get("task")
    if task is not None and not isinstance(task, str):
        raise ValueError("task must be a string")
    class_ids = payload.get("class_ids")
    if class_ids is not None and (
        not isinstance(class_ids, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in class_ids)
    ):
        raise ValueError("class_ids must be a list of integers")

    values = {
        "task": task,
        "conf_threshold": _optional_number(payload, "conf_threshold"),
        "iou_threshold": _optional_number(payload, "iou_threshold"),
        "mask_threshold": _optional_number(payload, "mask_threshold"),
        "max_detections": _optional_int(payload, "max_detections"),
        "class_agnostic_nms": _optional_bool(payload, "class_agnostic_nms"),
        "class_ids": tuple(class_ids) if class_ids is not None else None,
        "kpt_shape": _int_tuple(payload, "kpt_shape", 2),
        "num_classes": _optional_int(payload, "num_classes"),
    }
    return YoloPostConfig(**_drop_none(values))


def load_pipeline_config(path: Path) -> PipelineConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    payload = _check_keys("pipeline config", payload, {"schema_version", "provider", "letterbox", "postprocess"})

    schema_version = _require_int(payload, "schema_version")
    provider = payload.get("provider", "cpu")
    if not isinstance(provider, str):
        raise ValueError("provider must be a string")

    letterbox = _parse_letterbox(payload["letterbox"]) if payload.get("letterbox") is not None else None
    post = _parse_postprocess(payload["postprocess"]) if payload.get("postprocess") is not None else None

    return PipelineConfig(schema_version=schema_version, provider=provider, letterbox=letterbox, post=post)
