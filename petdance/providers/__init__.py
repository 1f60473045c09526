from .base import GenerationOptions, ProviderResult, VideoProvider
from .factory import ProviderFactory

__all__ = ["GenerationOptions", "ProviderFactory", "ProviderResult", "VideoProvider"]
