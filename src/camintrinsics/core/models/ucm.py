from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from camintrinsics.core.models.base import CameraModel, ModelKind
from camintrinsics.core.models.eucm import eucm_project, eucm_unproject


class UCM(CameraModel):
    """Unified camera model (fx, fy, cx, cy, alpha): the EUCM with beta fixed to 1."""

    kind = ModelKind.UCM
    PARAM_NAMES = ("fx", "fy", "cx", "cy", "alpha")
    DEFAULT_DISTORTION = (0.5,)
    DISTORTION_BOUNDS = ((4, 1e-6, 1.0),)

    @classmethod
    def project_generic(cls, params: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, np.ndarray]:
        fx, fy, cx, cy, alpha = params
        return eucm_project(fx, fy, cx, cy, alpha, 1.0, x, y, z)

    def unproject(self, uv_px: np.ndarray) -> np.ndarray:
        fx, fy, cx, cy, alpha = (float(v) for v in self._params)
        return eucm_unproject(fx, fy, cx, cy, alpha, 1.0, uv_px)
