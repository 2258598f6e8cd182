"""Factories for tests and prototyping."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from faker import Faker

from ..storage.base import AccountRecord


@dataclass(slots=True)
class AccountFactory:
    faker: Faker = field(default_factory=Faker)

    def user_id(self) -> str:
        return str(self.faker.unique.random_number(digits=18, fix_len=True))

    def community_id(self) -> str:
        return str(self.faker.unique.random_number(digits=18, fix_len=True))

    def build(
        self,
        community_id: str | None = None,
        *,
        wallet: int | None = None,
        bank_balance: int = 0,
        bank_max: int = 5000,
    ) -> AccountRecord:
        return AccountRecord(
            user_id=self.user_id(),
            community_id=community_id or self.community_id(),
            wallet=wallet if wallet is not None else self.faker.random_int(min=0, max=10_000),
            bank_balance=bank_balance,
            bank_max=bank_max,
        )

    def batch(self, count: int, community_id: str | None = None) -> Iterable[AccountRecord]:
        community_id = community_id or self.community_id()
        for _ in range(count):
            yield self.build(community_id)
