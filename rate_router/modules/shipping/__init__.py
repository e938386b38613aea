"""
Shipping Module

- Postal zone mapping and delivery estimates
- Rate providers (internal flat rate, ShipEngine, UPS) behind BaseRateProvider
- RateAggregator for concurrent quoting with fallback substitution
"""
from rate_router.modules.shipping.aggregator import AggregateResult, RateAggregator
from rate_router.modules.shipping.providers import RateProviderFactory
from rate_router.modules.shipping.providers.base import BaseRateProvider, Quote, ShipmentRequest
from rate_router.modules.shipping.zones import PostalZoneMapper, postal_zone_mapper

__all__ = [
    "AggregateResult",
    "RateAggregator",
    "RateProviderFactory",
    "BaseRateProvider",
    "Quote",
    "ShipmentRequest",
    "PostalZoneMapper",
    "postal_zone_mapper",
]
