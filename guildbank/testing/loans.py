"""Loan escape hatches for test fixtures only.

Production code never moves a loan between states directly; delinquency is
reached lazily through normalization. Tests use these helpers to set up a
state without waiting for the clock.
"""

from __future__ import annotations

from ..storage.base import AccountStore, LoanStatus


class LoanFixtures:
    def __init__(self, store: AccountStore) -> None:
        self._store = store

    async def force_delinquent(
        self, user_id: str, community_id: str, *, debt: int | None = None, at_ms: int = 0
    ) -> None:
        async with self._store.transaction() as tx:
            account = await tx.lock(user_id, community_id)
            if account.loan is None:
                raise ValueError(f"Account {user_id}:{community_id} has no loan")
            account.loan.status = LoanStatus.DELINQUENT
            account.loan.defaulted_at = at_ms
            if debt is not None:
                account.loan.debt = debt
            await tx.save(account)

    async def force_clear(self, user_id: str, community_id: str) -> None:
        async with self._store.transaction() as tx:
            account = await tx.lock(user_id, community_id)
            account.loan = None
            await tx.save(account)
