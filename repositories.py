from abc import ABC, abstractmethod
from typing import Dict, Optional
import asyncio
from collections import defaultdict

import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from config import Settings
from exceptions import BalanceStoreError
from storage import CONDITIONAL_DEBIT_SCRIPT, create_redis_client

logger = structlog.get_logger()


class BalanceRepository(ABC):
    @abstractmethod
    async def set_balance(self, key: str, value: int) -> None:
        """Overwrite the balance stored under key."""
        pass

    @abstractmethod
    async def conditional_debit(self, key: str, amount: int) -> Optional[int]:
        """Atomically debit amount if the balance covers it.

        A missing key counts as a balance of 0. Returns the new balance, or
        None when the balance is too low, in which case nothing is changed.
        """
        pass

    @abstractmethod
    async def get_balance(self, key: str) -> int:
        """Get the current balance. Missing keys read as 0."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store is reachable."""
        pass

    async def close(self) -> None:
        """Release any connections held by the repository."""
        pass


class InMemoryBalanceRepository(BalanceRepository):
    """Process-local store for development and tests.

    Writes to a key are serialized by that key's lock, the same way a single
    Redis server serializes commands. State is not shared between processes.
    """

    def __init__(self):
        self.balances: Dict[str, int] = {}
        self.locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def set_balance(self, key: str, value: int) -> None:
        async with self.locks[key]:
            self.balances[key] = value

    async def conditional_debit(self, key: str, amount: int) -> Optional[int]:
        async with self.locks[key]:
            balance = self.balances.get(key, 0)
            if balance < amount:
                return None
            self.balances[key] = balance - amount
            return self.balances[key]

    async def get_balance(self, key: str) -> int:
        return self.balances.get(key, 0)

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Drop all balances (for testing)."""
        self.balances.clear()
        self.locks.clear()


class RedisBalanceRepository(BalanceRepository):
    def __init__(self, client: redis.Redis):
        self.client = client
        self._debit_script = client.register_script(CONDITIONAL_DEBIT_SCRIPT)

    async def set_balance(self, key: str, value: int) -> None:
        try:
            await self.client.set(key, value)
        except RedisError as e:
            raise BalanceStoreError("set", key, str(e)) from e

    async def conditional_debit(self, key: str, amount: int) -> Optional[int]:
        try:
            result = await self._debit_script(keys=[key], args=[amount])
        except RedisError as e:
            raise BalanceStoreError("conditional_debit", key, str(e)) from e
        return None if result is None else int(result)

    async def get_balance(self, key: str) -> int:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            raise BalanceStoreError("get", key, str(e)) from e
        return int(value) if value is not None else 0

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning("Balance store ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


def create_balance_repository(settings: Settings) -> BalanceRepository:
    backend = settings.store_backend.lower()
    if backend == "memory":
        return InMemoryBalanceRepository()
    if backend == "redis":
        return RedisBalanceRepository(create_redis_client(settings))
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


_balance_repo: Optional[BalanceRepository] = None


def init_balance_repository(settings: Settings) -> BalanceRepository:
    global _balance_repo
    if _balance_repo is None:
        _balance_repo = create_balance_repository(settings)
        logger.info("Balance store initialized", backend=settings.store_backend)
    return _balance_repo


def get_balance_repository() -> BalanceRepository:
    if _balance_repo is None:
        from config import get_settings
        return init_balance_repository(get_settings())
    return _balance_repo


async def close_balance_repository() -> None:
    global _balance_repo
    if _balance_repo is not None:
        await _balance_repo.close()
        _balance_repo = None


# For tests
def reset_repositories() -> InMemoryBalanceRepository:
    """Swap in a fresh in-memory store (for testing only)."""
    global _balance_repo
    _balance_repo = InMemoryBalanceRepository()
    return _balance_repo
