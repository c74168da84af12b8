"""Progressive per-unit pricing for billable offer work."""

from __future__ import annotations

from decimal import Decimal
from typing import Final

# (last unit number covered by the tier, net price per unit); the final tier is open-ended.
PRICE_TIERS: Final[tuple[tuple[int | None, Decimal], ...]] = (
  (100, Decimal("1.09")),
  (400, Decimal("0.99")),
  (800, Decimal("0.89")),
  (None, Decimal("0.79")),
)


def price_for_next_unit(counter: int) -> Decimal:
  """Return the price of the unit that follows `counter` already-billed units."""
  if counter < 0:
    raise ValueError("counter must be >= 0")

  next_unit = counter + 1
  for upper_bound, price in PRICE_TIERS:
    if upper_bound is None or next_unit <= upper_bound:
      return price

  raise AssertionError("price tiers must end with an open-ended tier")


def total_price(counter: int, units: int) -> Decimal:
  """Sum the progressive price of `units` consecutive units starting after `counter`."""
  if units < 0:
    raise ValueError("units must be >= 0")

  total = Decimal("0.00")
  for offset in range(units):
    total += price_for_next_unit(counter + offset)
  return total
