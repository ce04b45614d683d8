"""
Credit ledger: balance operations on Account.boost_credits / total_spent.

Every mutation is a relative UPDATE against the persisted row, so a credit
grant (subscription settlement) and a debit (credit boost) running at the
same time both land. Nothing here commits; callers own the transaction.
"""
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from app.errors import BadRequestError, InsufficientBalanceError, NotFoundError
from app.extensions import db
from app.models import Account
from app.utils.helpers import round_currency


def boost_cost(duration_days: int) -> int:
    return int(current_app.config.get("BOOST_RATE_PER_DAY", 5)) * int(duration_days)


def get_balance(account_id: int) -> int:
    balance = db.session.query(Account.boost_credits).filter(Account.id == account_id).scalar()
    if balance is None:
        raise NotFoundError("Account not found")
    return int(balance)


def debit(account_id: int, amount: int) -> int:
    """
    Take `amount` credits if, and only if, the persisted balance covers it.
    Returns the new balance; raises InsufficientBalanceError with the
    shortfall otherwise (balance untouched).
    """
    if amount <= 0:
        raise BadRequestError("Debit amount must be positive")
    result = db.session.execute(
        update(Account)
        .where(Account.id == account_id, Account.boost_credits >= amount)
        .values(boost_credits=Account.boost_credits - amount)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        balance = get_balance(account_id)
        raise InsufficientBalanceError(
            "Insufficient boost credits. Payment required.",
            cost=amount,
            balance=balance,
        )
    balance = get_balance(account_id)
    current_app.logger.info(
        "credits.debited",
        extra={"account_id": account_id, "amount": amount, "balance": balance},
    )
    return balance


def grant(account_id: int, amount: int, *, reason: str = "") -> int:
    if amount < 0:
        raise BadRequestError("Grant amount must not be negative")
    if amount == 0:
        return get_balance(account_id)
    result = db.session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(boost_credits=Account.boost_credits + amount)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise NotFoundError("Account not found")
    balance = get_balance(account_id)
    current_app.logger.info(
        "credits.granted",
        extra={"account_id": account_id, "amount": amount, "balance": balance, "reason": reason},
    )
    return balance


def add_spend(account_id: int, amount) -> None:
    amount = round_currency(amount)
    if amount <= Decimal("0"):
        return
    db.session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(total_spent=Account.total_spent + amount)
        .execution_options(synchronize_session="fetch")
    )
