"""
Rate Aggregator

Fans out to every configured provider concurrently and joins on all of them,
each call bounded by its own timeout. A provider that errors or times out
contributes a ProviderError entry and its fallback quotes instead of live
ones; a provider that answers but leaves out a carrier it covers gets a
fallback quote for that carrier. Provider failures never escape as
exceptions.

The only hard failure is an empty result (every provider failed and no
fallback covered anything), raised as NoQuotesAvailable.

Cancelling the calling task cancels every in-flight provider call.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from rate_router.core.exceptions import NoQuotesAvailable, ProviderError, ProviderTimeout
from rate_router.modules.shipping.providers.base import (
    BaseRateProvider,
    Quote,
    QuoteSource,
    ShipmentRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 5.0


@dataclass
class AggregateResult:
    """Quotes in provider registration order, plus the provider failures behind any fallbacks."""
    quotes: List[Quote] = field(default_factory=list)
    errors: List[ProviderError] = field(default_factory=list)

    @property
    def fallback_count(self) -> int:
        return sum(1 for q in self.quotes if q.source == QuoteSource.FALLBACK)


class RateAggregator:
    """
    Concurrent multi-provider quoting.

    Usage:
        aggregator = RateAggregator(providers, timeout_seconds=5.0)
        result = await aggregator.quote(request)
    """

    def __init__(
        self,
        providers: Sequence[BaseRateProvider],
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        provider_timeouts: Optional[Dict[str, float]] = None,
    ):
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self.provider_timeouts = provider_timeouts or {}

    def _timeout_for(self, provider: BaseRateProvider) -> float:
        return self.provider_timeouts.get(provider.provider_name, self.timeout_seconds)

    async def _call_provider(
        self,
        provider: BaseRateProvider,
        request: ShipmentRequest,
    ) -> Tuple[List[Quote], Optional[ProviderError]]:
        """Run one provider; returns (quotes, None) or ([], error). Never raises except on cancellation."""
        timeout = self._timeout_for(provider)
        name = provider.provider_name

        try:
            quotes = await asyncio.wait_for(provider.get_quotes(request), timeout=timeout)
            return list(quotes or []), None
        except asyncio.TimeoutError:
            error = ProviderTimeout(
                f"{name} did not respond within {timeout}s",
                provider=name,
                timeout_seconds=timeout,
            )
        except ProviderError as e:
            error = e
        except Exception as e:
            error = ProviderError(
                f"{name} failed: {type(e).__name__}: {e}",
                provider=name,
            )

        logger.warning(
            f"[AGGREGATOR] Provider {name} failed for order {request.order_id}: "
            f"{error.code} - {error.message}"
        )
        return [], error

    def _valid(self, quote: Quote, provider: BaseRateProvider) -> bool:
        if quote.amount_cents is None or quote.amount_cents < 0:
            logger.warning(
                f"[AGGREGATOR] Dropping {provider.provider_name} quote with invalid amount "
                f"{quote.amount_cents} for {quote.carrier}"
            )
            return False
        return True

    async def quote(self, request: ShipmentRequest) -> AggregateResult:
        """
        Collect quotes from every provider.

        Raises:
            NoQuotesAvailable: if no live or fallback quote was produced
        """
        outcomes = await asyncio.gather(
            *(self._call_provider(provider, request) for provider in self.providers)
        )

        result = AggregateResult()
        for provider, (live_quotes, error) in zip(self.providers, outcomes):
            if error is not None:
                result.errors.append(error)
                fallbacks = provider.fallback_quotes(request)
                if fallbacks:
                    logger.info(
                        f"[AGGREGATOR] Substituting {len(fallbacks)} fallback quote(s) "
                        f"for {provider.provider_name}"
                    )
                result.quotes.extend(fallbacks)
                continue

            live_quotes = [q for q in live_quotes if self._valid(q, provider)]
            result.quotes.extend(live_quotes)

            quoted_carriers = {q.carrier for q in live_quotes}
            missing = [c for c in provider.carriers if c not in quoted_carriers]
            if missing:
                fallbacks = provider.fallback_quotes(request, missing)
                if fallbacks:
                    logger.info(
                        f"[AGGREGATOR] {provider.provider_name} returned no quote for "
                        f"{', '.join(missing)}; using fallback"
                    )
                result.quotes.extend(fallbacks)

        if not result.quotes:
            logger.error(
                f"[AGGREGATOR] No quotes for order {request.order_id}: "
                f"{len(result.errors)} provider error(s), no fallbacks"
            )
            raise NoQuotesAvailable(
                f"No quotes available for order {request.order_id}",
                errors=result.errors,
            )

        logger.info(
            f"[AGGREGATOR] Order {request.order_id}: {len(result.quotes)} quote(s), "
            f"{result.fallback_count} fallback, {len(result.errors)} error(s)"
        )
        return result

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
