# backend/services/tax.py
from decimal import Decimal
from typing import Protocol, Sequence

from utils.money import to_money


class TaxPolicy(Protocol):
    def compute(self, subtotal: Decimal, items: Sequence) -> Decimal: ...


class ZeroTaxPolicy:
    """Prices are tax-inclusive; nothing is added on top."""

    def compute(self, subtotal, items):
        return Decimal("0.00")


class FlatRateTaxPolicy:
    # rate in percent, e.g. 22 for 22% VAT
    def __init__(self, rate):
        self.rate = Decimal(str(rate))

    def compute(self, subtotal, items):
        return to_money(Decimal(subtotal) * self.rate / 100)


default_tax_policy = ZeroTaxPolicy()
