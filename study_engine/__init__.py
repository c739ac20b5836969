"""Adaptive retrieval and analytics engine for study sets."""

from .config import AppConfig
from .pipeline import StudyEngine

__all__ = ["AppConfig", "StudyEngine"]
