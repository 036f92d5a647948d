"""Model loading utilities"""

from .model_loader import ModelLoader, get_face_models, check_models

__all__ = ["ModelLoader", "get_face_models", "check_models"]
