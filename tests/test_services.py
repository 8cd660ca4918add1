import pytest
import asyncio
from unittest.mock import AsyncMock

from exceptions import BalanceStoreError
from models import REJECTED_BALANCE, ChargeResult
from repositories import BalanceRepository, InMemoryBalanceRepository
from services import AuthorizationService, get_authorization_service


@pytest.fixture
def store():
    return InMemoryBalanceRepository()


@pytest.fixture
def service(store):
    return get_authorization_service(store, 100)


class TestAuthorizationService:
    """Test the check-and-debit service against the in-memory store."""

    @pytest.mark.asyncio
    async def test_reset_sets_default_balance(self, service, store):
        await service.reset("acc")

        assert await store.get_balance("acc/balance") == 100

    @pytest.mark.asyncio
    async def test_custom_default_balance(self, store):
        service = AuthorizationService(store, default_balance=250)

        await service.reset("acc")
        result = await service.charge("acc", 250)

        assert result == ChargeResult(isAuthorized=True, remainingBalance=0, charges=250)

    @pytest.mark.asyncio
    async def test_authorized_charge(self, service):
        await service.reset("acc")

        result = await service.charge("acc", 40)

        assert result.isAuthorized is True
        assert result.remainingBalance == 60
        assert result.charges == 40

    @pytest.mark.asyncio
    async def test_rejected_charge(self, service, store):
        await service.reset("acc")

        result = await service.charge("acc", 101)

        assert result == ChargeResult.rejected()
        assert result.remainingBalance == REJECTED_BALANCE
        assert await store.get_balance("acc/balance") == 100

    @pytest.mark.asyncio
    async def test_zero_amount_passes_through(self, service, store):
        """The service does not police amounts; a zero charge trivially succeeds."""
        result = await service.charge("fresh", 0)

        assert result == ChargeResult(isAuthorized=True, remainingBalance=0, charges=0)
        assert await store.get_balance("fresh/balance") == 0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        repo = AsyncMock(spec=BalanceRepository)
        repo.conditional_debit.side_effect = BalanceStoreError("conditional_debit", "acc/balance", "timeout")
        service = AuthorizationService(repo)

        with pytest.raises(BalanceStoreError) as exc_info:
            await service.charge("acc", 10)

        assert exc_info.value.operation == "conditional_debit"
        assert "timeout" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_concurrent_charges(self, service, store):
        await service.reset("acc")

        results = await asyncio.gather(*[service.charge("acc", 100) for _ in range(5)])

        assert sum(r.isAuthorized for r in results) == 1
        assert await store.get_balance("acc/balance") == 0


class TestInMemoryBalanceRepository:
    """Test the in-memory store primitives."""

    @pytest.mark.asyncio
    async def test_missing_key_reads_as_zero(self, store):
        assert await store.get_balance("nobody/balance") == 0
        assert await store.conditional_debit("nobody/balance", 1) is None

    @pytest.mark.asyncio
    async def test_exact_balance_debit(self, store):
        await store.set_balance("k", 5)

        assert await store.conditional_debit("k", 5) == 0
        assert await store.conditional_debit("k", 1) is None

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.set_balance("k", 5)
        store.clear()

        assert await store.get_balance("k") == 0

    @pytest.mark.asyncio
    async def test_debit_waits_for_key_lock(self, store):
        await store.set_balance("k", 1)

        async with store.locks["k"]:
            pending = asyncio.create_task(store.conditional_debit("k", 1))
            await asyncio.sleep(0)
            assert not pending.done()
            # A write that lands while the debit waits is what the debit sees
            store.balances["k"] = 0

        assert await pending is None
        assert await store.get_balance("k") == 0

    @pytest.mark.asyncio
    async def test_other_keys_not_blocked(self, store):
        await store.set_balance("a", 5)
        await store.set_balance("b", 5)

        async with store.locks["a"]:
            assert await store.conditional_debit("b", 5) == 0
