from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np


class ImageSize(NamedTuple):
    width: int
    height: int


SizeLike = Union[ImageSize, Tuple[int, int], int]


def as_size(size: SizeLike) -> ImageSize:
    """
    Normalise a (width, height) pair. Plain ints are treated as square sizes.
    """

    if isinstance(size, int):
        return ImageSize(size, size)
    w, h = size
    return ImageSize(int(w), int(h))


class TaskType(str, Enum):
    """
    Tells the postprocessor how to read the extra channels at the tail of each row.
    """

    DETECT = "detect"
    SEGMENT = "segment"
    POSE = "pose"

    @classmethod
    def parse(cls, value: Union[str, "TaskType"]) -> "TaskType":
        if isinstance(value, TaskType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported task {value!r}; expected one of {[t.value for t in cls]}") from None


@dataclass(frozen=True)
class LetterboxParams:
    """
    Uniform scale plus the per-side padding (already halved) of one letterbox call.
    """

    scale: float
    pad_x: float
    pad_y: float

    def __post_init__(self) -> None:
        if not self.scale > 0:
            raise ValueError(f"scale must be > 0 (got {self.scale})")
        if self.pad_x < 0 or self.pad_y < 0:
            raise ValueError(f"padding must be >= 0 (got pad_x={self.pad_x}, pad_y={self.pad_y})")


@dataclass
class Rect:
    x: float
    y: float
    width: float
    height: float

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.width, self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@dataclass
class Candidates:
    """
    Batch of decoded detections kept as parallel arrays.

    boxes are (N, 4) xywh in network input space, extras are (N, K) and hold
    whatever the model appends after the class scores (mask coefficients or
    keypoints).
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    extras: np.ndarray

    @classmethod
    def empty(cls, extra_channels: int = 0) -> "Candidates":
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            class_ids=np.zeros((0,), dtype=np.int64),
            extras=np.zeros((0, extra_channels), dtype=np.float32),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def take(self, idx: np.ndarray) -> "Candidates":
        return Candidates(
            boxes=self.boxes[idx],
            scores=self.scores[idx],
            class_ids=self.class_ids[idx],
            extras=self.extras[idx],
        )


@dataclass
class YoloResult:
    """
    One final detection in original image coordinates.
    """

    bbox: Rect
    confidence: float
    class_id: int
    mask: Optional[np.ndarray] = field(default=None, repr=False)
    keypoints: Optional[np.ndarray] = field(default=None, repr=False)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.bbox.as_xyxy()
