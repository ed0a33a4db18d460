"""Catalog of tradable markets fetched with a `market_all` call."""

from __future__ import annotations

import logging

from .codec import parse_markets
from .correlator import RequestCorrelator
from .models import MarketInfo, RequestKind


logger = logging.getLogger(__name__)

DEFAULT_MARKETS = [
    MarketInfo(market="KRW-BTC", local_name="비트코인", display_name="Bitcoin"),
    MarketInfo(market="KRW-ETH", local_name="이더리움", display_name="Ethereum"),
    MarketInfo(market="KRW-XRP", local_name="리플", display_name="Ripple"),
    MarketInfo(market="KRW-SOL", local_name="솔라나", display_name="Solana"),
    MarketInfo(market="KRW-ADA", local_name="에이다", display_name="Cardano"),
]


class MarketCatalog:
    """Markets quoted in one currency. Starts with a small built-in list."""

    def __init__(self, quote_prefix: str = "KRW-"):
        self.quote_prefix = quote_prefix
        self.markets: list[MarketInfo] = [
            m for m in DEFAULT_MARKETS if m.market.startswith(quote_prefix)
        ]
        self.loaded = False

    async def load(self, correlator: RequestCorrelator, timeout: float | None = None) -> list[MarketInfo]:
        """
        Fetch the full catalog and keep markets with the quote prefix.

        Errors from the call propagate; the current list is kept on failure.
        """
        response = await correlator.call(RequestKind.CATALOG, {"is_details": True}, timeout)
        markets = [m for m in parse_markets(response.data) if m.market.startswith(self.quote_prefix)]
        logger.info(f"Loaded {len(markets)} {self.quote_prefix.rstrip('-')} markets ({len(response.data)} listed)")
        self.markets = markets
        self.loaded = True
        return markets

    def get(self, market: str) -> MarketInfo | None:
        return next((m for m in self.markets if m.market == market), None)

    def label(self, market: str) -> str:
        """Human label like '비트코인 (KRW-BTC)', or the bare code if unknown."""
        info = self.get(market)
        if info is None:
            return market
        return f"{info.local_name} ({market})"
