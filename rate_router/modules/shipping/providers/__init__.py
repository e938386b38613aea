"""
Rate Provider Registry and Factory

- RateProviderFactory creates provider instances by registry name
- Only builds providers enabled in RATE_PROVIDERS
- Every provider receives the shared FallbackRateTable
"""
from typing import Dict, List, Optional, Type
import logging

from rate_router.core.config import Settings, settings as app_settings
from rate_router.modules.shipping.providers.base import BaseRateProvider
from rate_router.modules.shipping.providers.fallback import FallbackRateTable

logger = logging.getLogger(__name__)

# Registry of provider implementations, in registration order
_PROVIDER_REGISTRY: Dict[str, Type[BaseRateProvider]] = {}


def register_provider(name: str):
    """
    Decorator to register a rate provider implementation.

    Usage:
        @register_provider("shipengine")
        class ShipEngineProvider(BaseRateProvider):
            ...
    """
    def decorator(cls: Type[BaseRateProvider]):
        _PROVIDER_REGISTRY[name] = cls
        logger.info(f"Registered rate provider: {name} -> {cls.__name__}")
        return cls
    return decorator


class RateProviderFactory:
    """
    Factory for creating rate provider instances.

    Returns None for disabled or unknown providers.
    """

    @classmethod
    def get_provider(
        cls,
        name: str,
        settings: Optional[Settings] = None,
        fallback_table: Optional[FallbackRateTable] = None,
    ) -> Optional[BaseRateProvider]:
        settings = settings or app_settings
        if name not in settings.RATE_PROVIDERS:
            logger.debug(f"Rate provider {name} is disabled")
            return None

        provider_cls = _PROVIDER_REGISTRY.get(name)
        if not provider_cls:
            logger.warning(f"No implementation registered for rate provider: {name}")
            return None

        return provider_cls(settings=settings, fallback_table=fallback_table)

    @classmethod
    def get_enabled_providers(
        cls,
        settings: Optional[Settings] = None,
        fallback_table: Optional[FallbackRateTable] = None,
    ) -> List[BaseRateProvider]:
        """
        Build every enabled provider.

        Order follows RATE_PROVIDERS, which is also the tie-break order for
        equal quotes.
        """
        settings = settings or app_settings
        providers = []
        for name in settings.RATE_PROVIDERS:
            provider = cls.get_provider(name, settings, fallback_table)
            if provider:
                providers.append(provider)
        return providers

    @classmethod
    def get_registered_providers(cls) -> List[str]:
        """Get list of all registered provider names."""
        return list(_PROVIDER_REGISTRY.keys())


# Import providers to trigger registration
# These imports must be at the bottom to avoid circular imports
from rate_router.modules.shipping.providers.internal import InternalFlatRateProvider  # noqa: E402, F401
from rate_router.modules.shipping.providers.shipengine import ShipEngineProvider  # noqa: E402, F401
from rate_router.modules.shipping.providers.ups import UPSProvider  # noqa: E402, F401
