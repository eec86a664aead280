"""HeroStudio - AI hero backgrounds and video thumbnails from reference photos."""

__version__ = "0.1.0"

from herostudio.core.config import HeroStudioConfig, config
from herostudio.core.generation import GenerationOrchestrator

__all__ = [
    "GenerationOrchestrator",
    "HeroStudioConfig",
    "config",
]
