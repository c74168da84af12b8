"""Billing adapters for bulk edit jobs: per-offer charges and the pre-flight quote."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offersync.billing.ledger import CHARGE_TYPE_DESCRIPTION_UPDATE, ChargeReceipt, charge_next_unit, get_or_create_wallet, record_bulk_edits
from offersync.billing.pricing import total_price


class BillingGateway(Protocol):
  """Charges the batch processor issues after each chunk."""

  async def charge_offer_update(self, *, user_id: str, offer_id: str, job_id: str, description: str) -> ChargeReceipt: ...

  async def record_bulk_edits(self, *, user_id: str, count: int) -> None: ...


class WalletBilling:
  """BillingGateway backed by the wallet and ledger tables."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def charge_offer_update(self, *, user_id: str, offer_id: str, job_id: str, description: str) -> ChargeReceipt:
    async with self._session_factory() as session:
      # Keyed by offer and job so a retried chunk cannot bill the same offer twice.
      return await charge_next_unit(session, user_id=user_id, charge_type=CHARGE_TYPE_DESCRIPTION_UPDATE, external_id=offer_id, job_id=job_id, description=description)

  async def record_bulk_edits(self, *, user_id: str, count: int) -> None:
    async with self._session_factory() as session:
      await record_bulk_edits(session, user_id=user_id, count=count)


@dataclass(frozen=True)
class PreflightQuote:
  ok: bool
  required: Decimal
  balance: Decimal


class WalletPreflight:
  """Checks that a wallet can cover a whole job at progressive prices before it starts."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def quote(self, *, user_id: str, units: int) -> PreflightQuote:
    async with self._session_factory() as session:
      wallet = await get_or_create_wallet(session, user_id)
      # Unlocked read; the per-offer charges re-check the balance under a row lock.
      required = total_price(int(wallet.offers_created), units)
      balance = Decimal(wallet.balance)
    return PreflightQuote(ok=balance >= required, required=required, balance=balance)
