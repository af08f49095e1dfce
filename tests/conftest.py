from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from commission_dash.db.tables import affiliates, metadata, users
from commission_dash.ingest.models import AffiliateRule, RuleBook

ENTERPRISE = "prod_enterprise"
BASIC = "prod_basic"
NIC_PROMO = "promo_nic"
MARU_PROMO = "promo_maru"
AYOUB_CUTOFF = datetime(2025, 5, 20, tzinfo=timezone.utc)


def make_session(
    session_id: str,
    *,
    amount_cents: int,
    created: datetime,
    promo: str | None = None,
    product: str | None = BASIC,
    email: str | None = "buyer@customers.test",
    status: str = "paid",
) -> dict:
    return {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_cents,
        "payment_intent": f"pi_{session_id}",
        "payment_status": status,
        "customer_details": {"email": email},
        "created": int(created.timestamp()),
        "discounts": [{"promotion_code": promo}] if promo else [],
        "line_items": {"data": [{"description": "Course", "price": {"product": product}}]},
    }


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def rules():
    return RuleBook(
        rules={
            "ayoub": AffiliateRule(
                affiliate_code="ayoub",
                kind="flat",
                value=20,
                product_id=ENTERPRISE,
                match_without_promo=True,
                promo_ids=("promo_ayoub",),
                effective_from=AYOUB_CUTOFF,
            )
        },
        product_names={ENTERPRISE: "Enterprise", BASIC: "Basic"},
    )


@pytest.fixture()
def seeded_engine(engine):
    with engine.begin() as conn:
        conn.execute(users.insert(), [
            {"email": "admin@whaamkabaam.com", "role": "admin"},
            {"email": "nic@whaamkabaam.com", "role": "affiliate"},
            {"email": "maru@whaamkabaam.com", "role": "affiliate"},
            {"email": "ayoub@whaamkabaam.com", "role": "affiliate"},
        ])
        conn.execute(affiliates.insert(), [
            {"affiliate_code": "nic", "external_promo_id": NIC_PROMO, "commission_rate": 0.1, "user_ref": 2},
            {"affiliate_code": "maru", "external_promo_id": MARU_PROMO, "commission_rate": 0.2, "user_ref": 3},
            {"affiliate_code": "ayoub", "external_promo_id": None, "commission_rate": 0.2, "user_ref": 4},
        ])
    return engine
