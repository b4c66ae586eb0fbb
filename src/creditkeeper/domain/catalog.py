"""Purchasable products and credit period arithmetic."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Final

from creditkeeper.domain.model import GrantKind, GrantRequest, ProductKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


@dataclass(frozen=True, slots=True)
class Product:
    product_id: str
    kind: ProductKind
    credits: int
    display_name: str
    plan_id: str | None = None
    price: float | None = None

    @property
    def is_subscription(self) -> bool:
        return self.kind is ProductKind.SUBSCRIPTION


@dataclass(frozen=True, slots=True)
class CreditPeriod:
    """How often a plan's credits refresh: whole months or a fixed number of days."""

    months: int = 0
    days: int = 0


PLAN_PERIODS: Final[dict[str, CreditPeriod]] = {
    "weekly": CreditPeriod(days=7),
    "monthly": CreditPeriod(months=1),
    "yearly": CreditPeriod(months=1),
}

# Plans billed less often than their credits refresh. The ledger renews these
# itself; every other plan is renewed by a new store transaction.
LEDGER_RENEWED_PLANS: Final[frozenset[str]] = frozenset({"yearly"})


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_period_end(plan_id: str, start: datetime) -> datetime:
    try:
        period = PLAN_PERIODS[plan_id]
    except KeyError as exc:
        raise ValueError(f"Unknown plan: {plan_id}") from exc
    end = add_months(start, period.months) if period.months else start
    return end + timedelta(days=period.days)


class ProductCatalog:
    def __init__(self, products: Iterable[Product]) -> None:
        self._products = {product.product_id: product for product in products}

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def __iter__(self) -> Iterator[Product]:
        return iter(self._products.values())

    def get(self, product_id: str) -> Product | None:
        return self._products.get(product_id)

    def renews_between_billing(self, plan_id: str) -> bool:
        return plan_id in LEDGER_RENEWED_PLANS and self.plan(plan_id) is not None

    def plan(self, plan_id: str) -> Product | None:
        for product in self._products.values():
            if product.plan_id == plan_id:
                return product
        return None

    def grant_for(
        self,
        product: Product,
        *,
        transaction_id: str,
        purchased_at: datetime,
    ) -> GrantRequest:
        """Translate a purchased product into the ledger's grant request."""

        if product.is_subscription and product.plan_id is not None:
            return GrantRequest(
                transaction_id=transaction_id,
                credit_delta=product.credits,
                new_max=product.credits,
                kind=GrantKind.PERIOD,
                product_id=product.product_id,
                plan_id=product.plan_id,
                period_end=next_period_end(product.plan_id, purchased_at),
            )
        return GrantRequest(
            transaction_id=transaction_id,
            credit_delta=product.credits,
            new_max=product.credits,
            kind=GrantKind.TOP_UP,
            product_id=product.product_id,
        )


DEFAULT_PRODUCTS: Final[tuple[Product, ...]] = (
    Product("starter.25", ProductKind.CONSUMABLE, 15, "Starter Pack"),
    Product("value.75", ProductKind.CONSUMABLE, 45, "Value Pack"),
    Product("pro.200", ProductKind.CONSUMABLE, 120, "Pro Pack"),
    Product("ai.icons.weekly", ProductKind.SUBSCRIPTION, 10, "Weekly", "weekly", 2.99),
    Product("ai.icons.monthly", ProductKind.SUBSCRIPTION, 75, "Monthly", "monthly", 5.99),
    Product("ai.icons.yearly", ProductKind.SUBSCRIPTION, 90, "Yearly", "yearly", 59.99),
)


def default_catalog() -> ProductCatalog:
    return ProductCatalog(DEFAULT_PRODUCTS)
