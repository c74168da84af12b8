"""Wallet balance checks and transactional charges backed by the append-only ledger."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Final

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from offersync.billing.pricing import price_for_next_unit
from offersync.schema.billing import LedgerEntry, LedgerStatus, Wallet

logger = logging.getLogger(__name__)

CHARGE_TYPE_OFFER_CREATION: Final[str] = "offer_creation"
CHARGE_TYPE_DESCRIPTION_UPDATE: Final[str] = "ai_description_update"
# Both share one price schedule, so both advance the same volume counter.
COUNTED_CHARGE_TYPES: Final[frozenset[str]] = frozenset({CHARGE_TYPE_OFFER_CREATION, CHARGE_TYPE_DESCRIPTION_UPDATE})

# Internal product ids are short integers; anything longer is a marketplace offer id.
_MAX_INTERNAL_PRODUCT_ID_LENGTH: Final[int] = 9


class ChargeError(RuntimeError):
  """Raised when a wallet charge cannot be applied."""


class InsufficientFundsError(ChargeError):
  """Raised when the wallet balance does not cover the requested amount."""

  def __init__(self, *, required: Decimal, balance: Decimal) -> None:
    super().__init__(f"Insufficient funds: required {required}, available {balance}")
    self.required = required
    self.balance = balance


@dataclass(frozen=True)
class BalanceCheck:
  """Outcome of a balance pre-flight."""

  ok: bool
  balance: Decimal
  offers_created: int


@dataclass(frozen=True)
class ChargeReceipt:
  """Result of a charge attempt; `charged` is False when an earlier charge already covered it."""

  charged: bool
  amount: Decimal
  balance: Decimal
  offers_created: int
  entry_id: uuid.UUID | None = None

  @property
  def skipped(self) -> bool:
    return not self.charged


@asynccontextmanager
async def _wallet_transaction(session: AsyncSession):
  """Start a transaction appropriate for the current session state.

  AsyncSession autobegins on the first statement, so a second begin() in the
  same request would fail; use a SAVEPOINT when a transaction is already open.
  """
  if session.in_transaction():
    async with session.begin_nested():
      yield
    return
  async with session.begin():
    yield


def _normalize_ids(product_id: str | None, external_id: str | None) -> tuple[str | None, str | None]:
  """Move marketplace ids passed as product ids into the external id slot."""
  if product_id is not None and len(str(product_id)) > _MAX_INTERNAL_PRODUCT_ID_LENGTH and not external_id:
    logger.warning("productId %s looks like an external id; recording it as externalId", product_id)
    return None, str(product_id)
  return (str(product_id) if product_id is not None else None), external_id


def _idempotency_filters(*, user_id: str, charge_type: str, product_id: str | None, external_id: str | None, job_id: str | None) -> list | None:
  """Build the lookup for an earlier completed charge covering the same unit of work."""
  if product_id is not None:
    return [LedgerEntry.user_id == user_id, LedgerEntry.product_id == product_id, LedgerEntry.type == charge_type, LedgerEntry.status == LedgerStatus.COMPLETED]
  if external_id is not None:
    job_filter = LedgerEntry.job_id == job_id if job_id is not None else LedgerEntry.job_id.is_(None)
    return [LedgerEntry.user_id == user_id, LedgerEntry.external_id == external_id, LedgerEntry.type == charge_type, job_filter, LedgerEntry.status == LedgerStatus.COMPLETED]
  return None


async def has_completed_charge(session: AsyncSession, *, user_id: str, charge_type: str, product_id: str | None = None, external_id: str | None = None, job_id: str | None = None) -> bool:
  """Return True when a completed ledger entry already covers this unit of work."""
  product_id, external_id = _normalize_ids(product_id, external_id)
  filters = _idempotency_filters(user_id=user_id, charge_type=charge_type, product_id=product_id, external_id=external_id, job_id=job_id)
  if filters is None:
    return False
  result = await session.execute(select(LedgerEntry.id).where(*filters).limit(1))
  return result.scalar_one_or_none() is not None


async def get_or_create_wallet(session: AsyncSession, user_id: str) -> Wallet:
  """Return the user's wallet, creating an empty one on first use."""
  result = await session.execute(select(Wallet).where(Wallet.user_id == user_id))
  wallet = result.scalar_one_or_none()
  if wallet is not None:
    return wallet

  wallet = Wallet(user_id=user_id, balance=Decimal("0.00"), offers_created=0, bulk_edits_count=0)
  session.add(wallet)
  try:
    await session.commit()
  except IntegrityError:
    # A concurrent request created it first; use theirs.
    await session.rollback()
    result = await session.execute(select(Wallet).where(Wallet.user_id == user_id))
    wallet = result.scalar_one()
  logger.info("Created wallet for user %s", user_id)
  return wallet


async def check_balance(session: AsyncSession, user_id: str, amount: Decimal) -> BalanceCheck:
  """Report whether the wallet covers `amount` without locking it."""
  wallet = await get_or_create_wallet(session, user_id)
  balance = Decimal(wallet.balance)
  return BalanceCheck(ok=balance >= amount, balance=balance, offers_created=int(wallet.offers_created))


async def charge(session: AsyncSession, *, user_id: str, amount: Decimal, charge_type: str, product_id: str | None = None, external_id: str | None = None, job_id: str | None = None, description: str | None = None) -> ChargeReceipt:
  """Debit a fixed amount and append one ledger entry in a single transaction."""
  if amount <= 0:
    raise ValueError("amount must be positive.")
  return await _apply_charge(session, user_id=user_id, amount=amount, charge_type=charge_type, product_id=product_id, external_id=external_id, job_id=job_id, description=description)


async def charge_next_unit(session: AsyncSession, *, user_id: str, charge_type: str, product_id: str | None = None, external_id: str | None = None, job_id: str | None = None, description: str | None = None) -> ChargeReceipt:
  """Debit the progressive price of the next unit, read from the locked wallet counter."""
  return await _apply_charge(session, user_id=user_id, amount=None, charge_type=charge_type, product_id=product_id, external_id=external_id, job_id=job_id, description=description)


async def _apply_charge(session: AsyncSession, *, user_id: str, amount: Decimal | None, charge_type: str, product_id: str | None, external_id: str | None, job_id: str | None, description: str | None) -> ChargeReceipt:
  product_id, external_id = _normalize_ids(product_id, external_id)
  logger.info("Charging user %s type=%s productId=%s externalId=%s jobId=%s", user_id, charge_type, product_id, external_id, job_id)

  async with _wallet_transaction(session):
    # Lock the wallet row so concurrent charges serialize on the balance.
    result = await session.execute(select(Wallet).where(Wallet.user_id == user_id).with_for_update())
    wallet = result.scalar_one_or_none()
    if wallet is None:
      raise ChargeError("Wallet not found")

    filters = _idempotency_filters(user_id=user_id, charge_type=charge_type, product_id=product_id, external_id=external_id, job_id=job_id)
    if filters is not None:
      existing_result = await session.execute(select(LedgerEntry.id).where(*filters).limit(1))
      existing_id = existing_result.scalar_one_or_none()
      if existing_id is not None:
        logger.info("Skipping charge for user %s; completed entry %s already exists", user_id, existing_id)
        return ChargeReceipt(charged=False, amount=Decimal("0.00"), balance=Decimal(wallet.balance), offers_created=int(wallet.offers_created), entry_id=existing_id)

    price = amount if amount is not None else price_for_next_unit(int(wallet.offers_created))
    balance = Decimal(wallet.balance)
    if balance < price:
      raise InsufficientFundsError(required=price, balance=balance)

    wallet.balance = balance - price
    if charge_type in COUNTED_CHARGE_TYPES:
      wallet.offers_created = int(wallet.offers_created) + 1

    entry = LedgerEntry(id=uuid.uuid4(), user_id=user_id, type=charge_type, amount=-price, status=LedgerStatus.COMPLETED, product_id=product_id, external_id=external_id, job_id=job_id, description=description)
    session.add(entry)
    await session.flush()

  return ChargeReceipt(charged=True, amount=price, balance=Decimal(wallet.balance), offers_created=int(wallet.offers_created), entry_id=entry.id)


async def record_bulk_edits(session: AsyncSession, *, user_id: str, count: int) -> None:
  """Add `count` successfully edited offers to the wallet's bulk edit counter."""
  if count <= 0:
    return
  async with _wallet_transaction(session):
    await session.execute(update(Wallet).where(Wallet.user_id == user_id).values(bulk_edits_count=Wallet.bulk_edits_count + count))
