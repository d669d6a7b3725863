"""coinstack – resilient market-data aggregation for the crypto dashboard.

Mediates between the dashboard UI and several rate-limited upstreams
(CoinGecko, alternative.me Fear & Greed, CryptoCompare news, RSS feeds
via rss2json / allorigins, Ethplorer address lookups) with a shared
TTL cache, in-flight request coalescing, retry with backoff, and a
multi-source news fallback ladder.

Everything is asyncio-based; construct one ``MarketDataService`` per
process and ``await`` its methods.
"""
