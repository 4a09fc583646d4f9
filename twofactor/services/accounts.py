"""Account repository over SQLAlchemy.

Mutations go through ``get_account*(..., lock=True)`` / ``get_challenge(...,
lock=True)`` followed by ``save_versioned``: the locked read serializes
writers on databases that support ``SELECT ... FOR UPDATE`` and the mapper's
version column turns any remaining lost update (SQLite ignores the lock)
into ``ConcurrentUpdate``.
"""

import logging
from typing import Any, Callable, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from twofactor.models.account import Account
from twofactor.models.challenge import Challenge
from twofactor.services.results import Failure, FailureKind, fail
from twofactor.services.security import hash_password

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrentUpdate(Exception):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_account_by_email(db: Session, email: str, lock: bool = False) -> Account | None:
    query = select(Account).where(Account.email == normalize_email(email))
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    return db.execute(query).scalars().first()


def get_account(db: Session, account_id: int, lock: bool = False) -> Account | None:
    query = select(Account).where(Account.id == account_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    return db.execute(query).scalars().first()


def get_challenge(db: Session, challenge_id: str, lock: bool = False) -> Challenge | None:
    query = select(Challenge).where(Challenge.id == challenge_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    return db.execute(query).scalars().first()


def save_versioned(db: Session, row: Any) -> Any:
    """Commit ``row`` with everything else pending; a lost update raises ``ConcurrentUpdate``."""
    label = f"{type(row).__name__} {row.id}"
    db.add(row)
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrentUpdate(f"{label} was modified concurrently") from e
    return row


def save_account(db: Session, account: Account) -> Account:
    """Persist the whole aggregate in one commit."""
    return save_versioned(db, account)


def run_with_retry(db: Session, attempts: int, operation: Callable[[], T]) -> T | Failure:
    """Run a read-modify-write ``operation`` again if another writer got there first.

    Gives up with ``Failure(CONCURRENT_UPDATE)`` once ``attempts`` are spent.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrentUpdate:
            db.rollback()
            logger.info("Concurrent update, retrying (%d/%d)", attempt, attempts)
    logger.warning("Giving up after %d concurrent updates", attempts)
    return fail(FailureKind.CONCURRENT_UPDATE)


def register_account(db: Session, email: str, username: str, password: str) -> Account | Failure:
    email = normalize_email(email)
    existing = db.execute(
        select(Account).where(or_(Account.email == email, Account.username == username))
    ).scalars().first()
    if existing:
        return fail(FailureKind.ACCOUNT_EXISTS)

    account = Account(
        email=email,
        username=username,
        password_hash=hash_password(password),
        two_factor_enabled=False,
        two_factor_recovery_codes=[],
        failed_login_count=0,
    )
    try:
        db.add(account)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Registration raced with an existing account: %s", username)
        return fail(FailureKind.ACCOUNT_EXISTS)
    db.refresh(account)
    logger.info("Account registered: %s", username)
    return account
