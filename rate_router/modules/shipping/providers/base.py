"""
Base Rate Provider Interface

Every rate source implements BaseRateProvider:
- carriers: the carrier codes this provider quotes for
- get_quotes(): live quotes for one shipment, amounts in integer cents
- fallback_quotes(): quotes from the injected FallbackRateTable, used by the
  aggregator when the live call fails or leaves a carrier out

Providers may raise ProviderError; the aggregator absorbs it.
"""
import dataclasses
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from rate_router.core.config import Settings, settings as app_settings

if TYPE_CHECKING:
    from rate_router.core.http_client import ResilientHTTPClient
    from rate_router.modules.shipping.providers.fallback import FallbackRateTable

logger = logging.getLogger(__name__)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

class QuoteSource(str, enum.Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Dimensions:
    """Package dimensions in inches."""
    length: Decimal
    width: Decimal
    height: Decimal

    def sorted_desc(self) -> Tuple[Decimal, Decimal, Decimal]:
        """Longest side first, so comparisons ignore orientation."""
        return tuple(sorted((self.length, self.width, self.height), reverse=True))


@dataclass(frozen=True)
class ShipmentRequest:
    """
    One order's shipment, normalized for quoting.

    Weight is whole grams; dimensions are inches. Zone is attached by the
    pipeline before quoting (with_zone) and left None before that.
    """
    destination_postal_code: str
    origin_postal_code: str
    weight_grams: int
    dimensions: Dimensions
    item_count: int = 1
    zone: Optional[int] = None
    order_id: Optional[str] = None
    organization_id: Optional[str] = None

    def with_zone(self, zone: int) -> "ShipmentRequest":
        return dataclasses.replace(self, zone=zone)


@dataclass(frozen=True)
class Quote:
    """A single carrier + service price and delivery estimate."""
    carrier: str
    service: str
    amount_cents: int
    days_min: Optional[int]
    days_max: Optional[int]
    source: QuoteSource
    provider: str
    fetched_at: datetime
    service_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier,
            "service": self.service,
            "service_code": self.service_code,
            "amount_cents": self.amount_cents,
            "days_min": self.days_min,
            "days_max": self.days_max,
            "source": self.source.value,
            "provider": self.provider,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quote":
        return cls(
            carrier=data["carrier"],
            service=data["service"],
            service_code=data.get("service_code"),
            amount_cents=int(data["amount_cents"]),
            days_min=data.get("days_min"),
            days_max=data.get("days_max"),
            source=QuoteSource(data.get("source", QuoteSource.LIVE.value)),
            provider=data.get("provider", ""),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Abstract Base Provider
# =============================================================================

class BaseRateProvider(ABC):
    """
    Abstract base class for all rate providers.

    Subclasses are registered with @register_provider and built by
    RateProviderFactory.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional["ResilientHTTPClient"] = None,
        fallback_table: Optional["FallbackRateTable"] = None,
    ):
        self._settings = settings or app_settings
        self._http_client = http_client
        self._fallback_table = fallback_table

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Registry name, e.g. 'shipengine'."""
        pass

    @property
    @abstractmethod
    def carriers(self) -> Tuple[str, ...]:
        """Carrier codes this provider quotes for (lowercase)."""
        pass

    @abstractmethod
    async def get_quotes(self, request: ShipmentRequest) -> List[Quote]:
        """
        Get live quotes for a shipment.

        Raises:
            ProviderError: on error responses or unreadable bodies
        """
        pass

    def fallback_quotes(
        self,
        request: ShipmentRequest,
        carriers: Optional[Iterable[str]] = None,
    ) -> List[Quote]:
        """Quotes from the fallback table for the given (default: all) covered carriers."""
        if self._fallback_table is None:
            return []
        wanted = self.carriers if carriers is None else tuple(carriers)
        quotes = []
        for carrier in wanted:
            quote = self._fallback_table.quote(carrier, request, provider=self.provider_name)
            if quote is not None:
                quotes.append(quote)
        return quotes

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.close()

    def get_config_value(self, key: str, default: Any = None) -> Any:
        return getattr(self._settings, key, default)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(carriers={self.carriers!r})"
