from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"
CUDA_PROVIDER = "CUDAExecutionProvider"

_PROVIDER_ALIASES = {
    "cpu": CPU_PROVIDER,
    "cpuexecutionprovider": CPU_PROVIDER,
    "cuda": CUDA_PROVIDER,
    "cudaexecutionprovider": CUDA_PROVIDER,
}


def resolve_providers(provider: Optional[str], available: Sequence[str]) -> List[str]:
    """
    Map a short provider name ("cpu" / "cuda") to an ORT provider list.

    CUDA falls back to CPU with a warning when the installed ORT build lacks it.
    """

    if provider is None:
        return [CPU_PROVIDER]

    key = str(provider).strip().lower()
    if key not in _PROVIDER_ALIASES:
        raise ValueError(f"Unsupported ONNX Runtime provider {provider!r}; use 'cpu' or 'cuda'.")

    chosen = _PROVIDER_ALIASES[key]
    if chosen == CUDA_PROVIDER:
        if CUDA_PROVIDER not in available:
            logger.warning("CUDA is not supported by this ONNX Runtime build. Falling back to CPU.")
            return [CPU_PROVIDER]
        return [CUDA_PROVIDER, CPU_PROVIDER]
    return [CPU_PROVIDER]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - provider: "cpu" or "cuda" (CUDA falls back to CPU when unavailable)
    - input_name: override the auto-selected input name if needed
    - log_id: ORT session log id
    """

    provider: Optional[str] = "cpu"
    input_name: Optional[str] = None
    log_id: str = "yolo_postkit"


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects an NCHW float32 blob, typically shaped (1, 3, H, W).
    Returns every model output as NumPy arrays (detections first; segmentation
    exports add the mask prototypes as the second output).
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        sess_opts.logid = cfg.log_id
        providers = resolve_providers(cfg.provider, ort.get_available_providers())
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)
        logger.info("Inference device: %s", ", ".join(self.providers_in_use))

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_names = [o.name for o in self.session.get_outputs()]
        self.metadata: Dict[str, str] = dict(self.session.get_modelmeta().custom_metadata_map)

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def input_shape(self) -> Sequence[Any]:
        return tuple(self.session.get_inputs()[0].shape)

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        return list(self.session.run(self.output_names, inputs))
