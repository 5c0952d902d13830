from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.tillbook.schemas.checkout import CheckoutSessionCreateRequest
from app.tillbook.services.sale_draft import BusinessSettings, LineItem, SaleDraft


def test_draft_computes_subtotal_and_item_count():
    draft = SaleDraft.build(
        [
            LineItem(sku="A", name="Apple", unit_price=Decimal("0.99"), quantity=3),
            LineItem(sku="B", name="Bread", unit_price=Decimal("3.50")),
        ],
        discount_amount="1.00",
    )
    assert draft.subtotal == Decimal("6.47")
    assert draft.item_count == 4
    assert SaleDraft.from_state(draft.to_state()) == draft


def test_business_date_uses_local_midnight():
    business = BusinessSettings(business_id="b-1", timezone="America/Toronto")
    late_evening_utc = datetime(2026, 3, 15, 2, 30, tzinfo=timezone.utc)
    assert business.local_date(late_evening_utc) == date(2026, 3, 14)


def test_unknown_timezone_falls_back_to_utc():
    business = BusinessSettings(business_id="b-1", timezone="Mars/Olympus_Mons")
    assert business.local_date(datetime(2026, 3, 15, 2, 30)) == date(2026, 3, 15)


def test_receipt_prefix_falls_back_to_business_id():
    assert BusinessSettings(business_id="0f8fad5b-d9cb-469f-a165-70867728950e").receipt_prefix == "950E"
    assert BusinessSettings(business_id="x", short_code="tb").receipt_prefix == "TB"


def test_discount_cannot_exceed_subtotal():
    with pytest.raises(ValidationError):
        CheckoutSessionCreateRequest(
            items=[{"name": "Mug", "unit_price": "10.00"}],
            discount_amount="12.00",
        )
