from ..config import Settings
from ..errors import ValidationError
from .base import VideoProvider
from .replicate import ReplicateProvider
from .runcomfy import RunComfyProvider
from .runway import RunwayProvider


class ProviderFactory:
    """Holds one adapter per provider, built once from settings."""

    def __init__(self, providers: dict[str, VideoProvider], default: str):
        if default not in providers:
            raise ValueError(f"Default provider '{default}' is not registered")
        self._providers = providers
        self.default = default

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderFactory":
        providers = {
            "runway": RunwayProvider(
                api_key=settings.runway_api_key,
                base_url=settings.runway_base_url,
                model_id=settings.runway_model_id,
            ),
            "replicate": ReplicateProvider(
                api_token=settings.replicate_api_token,
                model=settings.replicate_model,
                base_url=settings.replicate_base_url,
            ),
            "runcomfy": RunComfyProvider(
                api_key=settings.runcomfy_api_key,
                base_url=settings.runcomfy_base_url,
            ),
        }
        return cls(providers, default=settings.video_provider or "replicate")

    def get_provider(self, name: str = None) -> VideoProvider:
        key = (name or self.default).lower()
        provider = self._providers.get(key)
        if provider is None:
            raise ValidationError(f"Unknown video provider '{name}'")
        return provider

    @property
    def names(self) -> list[str]:
        return sorted(self._providers)
