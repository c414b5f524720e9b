import logging
from datetime import datetime
from decimal import Decimal

from ..core.errors import FieldError, ValidationError
from ..models.wallet import Wallet

logger = logging.getLogger(__name__)

BALANCE_LIMIT = Decimal("1000000000")


def check_balance(balance: Decimal) -> None:
    if not -BALANCE_LIMIT < balance < BALANCE_LIMIT:
        raise ValidationError([FieldError("balance", "out_of_range")])


def adjust_balance(wallet: Wallet, delta: Decimal) -> Wallet:
    """Add ``delta`` to the wallet's running total without committing."""
    new_balance = Decimal(wallet.balance) + Decimal(delta)
    check_balance(new_balance)
    logger.debug("Wallet %s balance %s -> %s", wallet.id, wallet.balance, new_balance)
    wallet.balance = new_balance
    wallet.updated_at = datetime.utcnow()
    return wallet
