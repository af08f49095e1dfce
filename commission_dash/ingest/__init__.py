"""Ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from commission_dash.ingest.models import AffiliateRule, RuleBook
from commission_dash.utils.dates import as_utc, parse_timestamp

RULES_PATH = pathlib.Path(__file__).with_name("rules.yml")


def load_rules(path: pathlib.Path | None = None) -> RuleBook:
    data = yaml.safe_load((path or RULES_PATH).read_text()) or {}
    rules: dict[str, AffiliateRule] = {}
    for code, item in (data.get("affiliates") or {}).items():
        item = dict(item or {})
        effective_from = item.pop("effective_from", None)
        if isinstance(effective_from, str):
            effective_from = parse_timestamp(effective_from)
        elif effective_from is not None:
            effective_from = as_utc(effective_from)
        rules[str(code)] = AffiliateRule(
            affiliate_code=str(code),
            promo_ids=tuple(item.pop("promo_ids", None) or ()),
            effective_from=effective_from,
            **item,
        )
    domains = tuple(data.get("placeholder_domains") or ("example.com",))
    return RuleBook(
        rules=rules,
        product_names=dict(data.get("products") or {}),
        placeholder_domains=domains,
    )
