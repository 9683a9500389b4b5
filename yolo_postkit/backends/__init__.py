"""
Inference backends for yolo_postkit.

`onnxruntime` is imported only when a backend is constructed, so the
post-processing code works without any inference runtime installed.
"""

from __future__ import annotations

from .onnxruntime_backend import (
    CPU_PROVIDER,
    CUDA_PROVIDER,
    OnnxRuntimeBackend,
    OnnxRuntimeBackendConfig,
    resolve_providers,
)

__all__ = [
    "CPU_PROVIDER",
    "CUDA_PROVIDER",
    "OnnxRuntimeBackend",
    "OnnxRuntimeBackendConfig",
    "resolve_providers",
]
