"""
Model Loader - Load-once, memoized access to the face models

The first load attempt decides the outcome for the process: success
returns the cached models on every later call, failure re-raises
ModelUnavailable without touching the disk again.
"""

import os
import logging
import threading
from typing import Any, Dict, Optional

from ...exam.errors import ModelUnavailable

logger = logging.getLogger(__name__)

# Default model paths (relative to this file's directory)
MODELS_DIR = os.path.join(os.path.dirname(__file__), "weights")
PREDICTOR_FILENAME = "shape_predictor_68_face_landmarks.dat"


def find_predictor_path(models_dir: str = MODELS_DIR) -> Optional[str]:
    """Return the first existing shape predictor path, or None"""
    possible_paths = [
        os.path.join(models_dir, PREDICTOR_FILENAME),
        os.environ.get("XHORAPROC_PREDICTOR_PATH", ""),
        PREDICTOR_FILENAME  # Current directory
    ]

    for path in possible_paths:
        if path and os.path.exists(path):
            return path
    return None


def _load_dlib_models(predictor_path: Optional[str]) -> Dict[str, Any]:
    try:
        import dlib
    except ImportError as e:
        raise ModelUnavailable("dlib not installed. Run: pip install dlib") from e

    path = predictor_path or find_predictor_path()
    if path is None:
        raise ModelUnavailable(
            f"{PREDICTOR_FILENAME} not found. "
            f"Download from http://dlib.net/files/{PREDICTOR_FILENAME}.bz2 "
            f"and place in {MODELS_DIR}"
        )

    try:
        detector = dlib.get_frontal_face_detector()
        predictor = dlib.shape_predictor(path)
    except RuntimeError as e:
        raise ModelUnavailable(f"Failed to load face models from {path}: {e}") from e

    logger.info(f"Loaded dlib face models from: {path}")
    return {"detector": detector, "predictor": predictor}


class ModelLoader:
    """
    Memoizes the outcome of a single model load.

    Args:
        load: Callable returning the loaded models; any exception it raises
              is remembered and reported as ModelUnavailable
    """

    def __init__(self, load=None, predictor_path: Optional[str] = None):
        self._load = load or (lambda: _load_dlib_models(predictor_path))
        self._lock = threading.Lock()
        self._models: Optional[Dict[str, Any]] = None
        self._error: Optional[ModelUnavailable] = None
        self.attempts = 0

    @property
    def loaded(self) -> bool:
        return self._models is not None

    @property
    def failed(self) -> bool:
        return self._error is not None

    def get(self) -> Dict[str, Any]:
        """
        Return the loaded models.

        Raises:
            ModelUnavailable: If the (single) load attempt failed
        """
        with self._lock:
            if self._models is not None:
                return self._models
            if self._error is not None:
                raise self._error

            self.attempts += 1
            try:
                self._models = self._load()
            except ModelUnavailable as e:
                self._error = e
            except Exception as e:
                self._error = ModelUnavailable(f"Face model load failed: {e}")
                self._error.__cause__ = e

            if self._error is not None:
                logger.error(f"Face model unavailable: {self._error}")
                raise self._error
            return self._models


_default_loader: Optional[ModelLoader] = None


def get_face_models() -> Dict[str, Any]:
    """Process-wide memoized dlib detector + predictor"""
    global _default_loader
    if _default_loader is None:
        _default_loader = ModelLoader()
    return _default_loader.get()


def check_models() -> dict:
    """
    Check which models are available.

    Returns:
        Dict with model status
    """
    status = {"dlib": False, "dlib_predictor": False}

    try:
        import dlib  # noqa: F401
        status["dlib"] = True
    except ImportError:
        pass

    status["dlib_predictor"] = find_predictor_path() is not None
    return status
