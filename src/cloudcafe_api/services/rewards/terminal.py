"""Staff-side scan, stamp and redeem operations."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.domain.identifiers import InvalidIdentifierFormatError, parse_customer_identifier
from cloudcafe_api.domain.rewards import RewardDecision, add_single_stamp, redeem
from cloudcafe_api.models.rewards import RewardLedger
from cloudcafe_api.models.user import User

from .ledger import RewardLedgerService


class CustomerNotFoundError(LookupError):
    code = "customer_not_found"

    def __init__(self, user_id: UUID) -> None:
        super().__init__("Customer not found")
        self.user_id = user_id


@dataclass
class TerminalLookup:
    customer: User
    ledger: RewardLedger


@dataclass
class TerminalResult:
    customer: User
    ledger: RewardLedger
    decision: RewardDecision

    @property
    def message(self) -> str:
        return self.decision.message


class StaffTerminal:
    """Resolves a scanned card to a customer and mutates their ledger.

    The payload is validated before the store is touched; unknown ids raise
    ``CustomerNotFoundError``.
    """

    def __init__(self, db_session: AsyncSession, ledger_service: RewardLedgerService | None = None) -> None:
        self._db = db_session
        self._ledgers = ledger_service or RewardLedgerService(db_session)

    async def _resolve_customer(self, payload: str | None) -> User:
        user_id = parse_customer_identifier(payload, settings.rewards_qr_prefix)
        customer = await self._db.get(User, user_id)
        if customer is None:
            logger.info("Scanned customer not found", user_id=str(user_id))
            raise CustomerNotFoundError(user_id)
        return customer

    async def lookup(self, payload: str | None) -> TerminalLookup:
        customer = await self._resolve_customer(payload)
        ledger = await self._ledgers.get_or_create(customer.id)
        await self._db.commit()
        return TerminalLookup(customer=customer, ledger=ledger)

    async def add_stamp(self, payload: str | None, staff: User) -> TerminalResult:
        customer = await self._resolve_customer(payload)
        threshold = self._ledgers.threshold
        mutation = await self._ledgers.mutate(
            customer.id,
            lambda state: add_single_stamp(state, threshold=threshold),
            source="staff_terminal",
            admin_id=staff.id,
        )
        await self._db.commit()
        return TerminalResult(customer=customer, ledger=mutation.ledger, decision=mutation.decision)

    async def redeem(self, payload: str | None, staff: User) -> TerminalResult:
        customer = await self._resolve_customer(payload)
        mutation = await self._ledgers.mutate(
            customer.id,
            redeem,
            source="staff_terminal",
            admin_id=staff.id,
        )
        await self._db.commit()
        return TerminalResult(customer=customer, ledger=mutation.ledger, decision=mutation.decision)


__all__ = [
    "CustomerNotFoundError",
    "InvalidIdentifierFormatError",
    "StaffTerminal",
    "TerminalLookup",
    "TerminalResult",
    "parse_customer_identifier",
]
