from dex_swap_fetcher.core.sinks.postgres_store import PostgresTradeStore
from dex_swap_fetcher.core.sinks.redis_queue import RedisTradeQueue

__all__ = ["PostgresTradeStore", "RedisTradeQueue"]
