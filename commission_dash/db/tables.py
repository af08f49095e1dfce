"""Table definitions used by the sync job and query service."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, MetaData, Table, Text, func

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", Text, nullable=False, unique=True),
    Column("role", Text, nullable=False, server_default="affiliate"),
)

affiliates = Table(
    "affiliates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("affiliate_code", Text, nullable=False, unique=True),
    Column("external_promo_id", Text),
    Column("commission_rate", Float, nullable=False, server_default="0.2"),
    Column("user_ref", Integer, ForeignKey("users.id")),
)

commission_sales = Table(
    "commission_sales",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", Text, nullable=False, unique=True),
    Column("payment_intent", Text),
    Column("customer_email", Text),
    Column("amount_paid", Float, nullable=False),
    Column("commission", Float, nullable=False),
    Column("affiliate_code", Text, nullable=False, index=True),
    Column("promo_code_id", Text),
    Column("product_id", Text),
    Column("product_name", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("refreshed_at", DateTime(timezone=True), nullable=False),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column("key", Text, primary_key=True),
    Column("value", JSON, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
