import structlog

from models import ChargeResult
from repositories import BalanceRepository
from storage import balance_key

logger = structlog.get_logger()

DEFAULT_BALANCE = 100


class AuthorizationService:
    def __init__(self, balance_repo: BalanceRepository, default_balance: int = DEFAULT_BALANCE):
        self.balance_repo = balance_repo
        self.default_balance = default_balance

    async def reset(self, account: str) -> None:
        """Set the account balance back to the default, overwriting it."""
        await self.balance_repo.set_balance(balance_key(account), self.default_balance)

        logger.debug(
            "Balance reset",
            account=account,
            balance=self.default_balance
        )

    async def charge(self, account: str, amount: int) -> ChargeResult:
        """Debit amount from the account if the balance covers it.

        Insufficient funds is an ordinary outcome and comes back as an
        unauthorized result. Store failures are raised to the caller.
        """
        remaining_balance = await self.balance_repo.conditional_debit(balance_key(account), amount)

        if remaining_balance is None:
            logger.debug(
                "Charge rejected",
                account=account,
                requested_amount=amount
            )
            return ChargeResult.rejected()

        logger.debug(
            "Charge applied",
            account=account,
            charges=amount,
            remaining_balance=remaining_balance
        )
        return ChargeResult.authorized(remaining_balance, amount)


# Factory function for dependency injection
def get_authorization_service(
    balance_repo: BalanceRepository,
    default_balance: int = DEFAULT_BALANCE
) -> AuthorizationService:
    return AuthorizationService(balance_repo, default_balance)
