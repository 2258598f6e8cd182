"""guildbank public API."""

from .app import LedgerApp
from .config import GuildBankConfig
from .domain.bank import BankService
from .domain.ledger import LedgerService

__all__ = [
    "BankService",
    "GuildBankConfig",
    "LedgerApp",
    "LedgerService",
]
