from __future__ import annotations

from datetime import UTC, datetime

import pytest

from creditkeeper.domain.catalog import add_months, default_catalog, next_period_end
from creditkeeper.domain.model import GrantKind


def test_default_catalog_credit_amounts() -> None:
    catalog = default_catalog()
    credits = {product.product_id: product.credits for product in catalog}

    assert credits == {
        "starter.25": 15,
        "value.75": 45,
        "pro.200": 120,
        "ai.icons.weekly": 10,
        "ai.icons.monthly": 75,
        "ai.icons.yearly": 90,
    }


def test_add_months_clamps_day() -> None:
    assert add_months(datetime(2025, 1, 31, tzinfo=UTC), 1) == datetime(2025, 2, 28, tzinfo=UTC)
    assert add_months(datetime(2025, 12, 15, tzinfo=UTC), 1) == datetime(2026, 1, 15, tzinfo=UTC)


def test_next_period_end_per_plan() -> None:
    start = datetime(2025, 3, 1, tzinfo=UTC)

    assert next_period_end("weekly", start) == datetime(2025, 3, 8, tzinfo=UTC)
    assert next_period_end("monthly", start) == datetime(2025, 4, 1, tzinfo=UTC)
    assert next_period_end("yearly", start) == datetime(2025, 4, 1, tzinfo=UTC)
    with pytest.raises(ValueError, match="Unknown plan"):
        next_period_end("daily", start)


def test_only_yearly_plan_renews_between_billing() -> None:
    catalog = default_catalog()

    assert catalog.renews_between_billing("yearly")
    assert not catalog.renews_between_billing("monthly")
    assert not catalog.renews_between_billing("weekly")


def test_grant_for_consumable_is_top_up() -> None:
    catalog = default_catalog()
    product = catalog.get("value.75")
    assert product is not None

    request = catalog.grant_for(
        product,
        transaction_id="tx-1",
        purchased_at=datetime(2025, 3, 1, tzinfo=UTC),
    )

    assert request.kind is GrantKind.TOP_UP
    assert request.credit_delta == 45
    assert request.period_end is None


def test_grant_for_subscription_is_period_grant() -> None:
    catalog = default_catalog()
    product = catalog.get("ai.icons.monthly")
    assert product is not None

    request = catalog.grant_for(
        product,
        transaction_id="tx-2",
        purchased_at=datetime(2025, 3, 10, tzinfo=UTC),
    )

    assert request.kind is GrantKind.PERIOD
    assert request.plan_id == "monthly"
    assert request.period_end == datetime(2025, 4, 10, tzinfo=UTC)
