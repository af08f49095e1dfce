"""Seed database with the initial admin and affiliate accounts."""

from __future__ import annotations

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine

from commission_dash.config import Settings
from commission_dash.db.migrate import run_migrations
from commission_dash.db.session import create_engine_from_settings

DEMO_USERS = [
    {"email": "admin@whaamkabaam.com", "role": "admin"},
    {"email": "ayoub@whaamkabaam.com", "role": "affiliate"},
    {"email": "nic@whaamkabaam.com", "role": "affiliate"},
    {"email": "maru@whaamkabaam.com", "role": "affiliate"},
]

DEMO_AFFILIATES = [
    {"email": "ayoub@whaamkabaam.com", "affiliate_code": "ayoub", "external_promo_id": None, "commission_rate": 0.2},
    {"email": "nic@whaamkabaam.com", "affiliate_code": "nic", "external_promo_id": "promo_1QyefCCgyJ2z2jNZEZv16p7s", "commission_rate": 0.2},
    {"email": "maru@whaamkabaam.com", "affiliate_code": "maru", "external_promo_id": "promo_1QvpMsCgyJ2z2jNZ0IC6vKLk", "commission_rate": 0.2},
]


def seed(engine: Engine) -> None:
    """Create the schema if needed and upsert the initial accounts."""
    run_migrations(engine)
    with engine.begin() as conn:
        for user in DEMO_USERS:
            conn.execute(
                text(
                    """
                    INSERT INTO users (email, role)
                    VALUES (:email, :role)
                    ON CONFLICT (email) DO UPDATE SET role = EXCLUDED.role
                    """
                ),
                user,
            )
        for affiliate in DEMO_AFFILIATES:
            conn.execute(
                text(
                    """
                    INSERT INTO affiliates (affiliate_code, external_promo_id, commission_rate, user_ref)
                    VALUES (:affiliate_code, :external_promo_id, :commission_rate,
                            (SELECT id FROM users WHERE email = :email))
                    ON CONFLICT (affiliate_code) DO UPDATE SET
                      external_promo_id = EXCLUDED.external_promo_id,
                      commission_rate = EXCLUDED.commission_rate,
                      user_ref = EXCLUDED.user_ref
                    """
                ),
                affiliate,
            )


def main() -> None:
    load_dotenv()
    seed(create_engine_from_settings(Settings.from_env()))
    print("Seed complete")


if __name__ == "__main__":
    main()
