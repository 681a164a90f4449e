"""
Parsing of identifiers that round-trip through the payment providers.

Checkout sets an external reference on every payment; the provider sends it
back on the payment resource. Known shapes:

    "42"                                         single order id
    "tenant:<uuid>;orders:1,2,3"                 one payment for several orders
    "subscription:<tenant>;plan:<plan>;days:30"  subscription renewal

Payment links embed the Mercado Pago preference id ("123456-abcd-ef01"), which
is the fallback key when the reference does not name an order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from shared.config.constants import Limits

_ORDERS_RE = re.compile(r"orders:([0-9,]+)", re.IGNORECASE)
_TENANT_RE = re.compile(r"tenant:([a-f0-9-]+)", re.IGNORECASE)
_PREFERENCE_ID_RE = re.compile(r"\d+-[0-9A-Za-z]+(?:-[0-9A-Za-z]+)*")
_PREFERENCE_KEYS = ("pref", "preference", "preference_id", "pref_id")


@dataclass(frozen=True)
class SubscriptionReference:
    tenant_id: str
    plan_id: str
    days: int | None


def parse_positive_int(value: Any) -> int | None:
    """Return value as an int when it is a string of digits (or an int) above zero."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text.isdigit() or not text.isascii():
        return None
    number = int(text)
    return number if number > 0 else None


def parse_key_values(reference: str | None) -> dict[str, str]:
    """
    Split "k:v;k:v" into a dict. Keys are lower-cased, whitespace trimmed,
    segments without a key are dropped and the first occurrence of a key wins.
    """
    result: dict[str, str] = {}
    if not reference:
        return result
    for segment in reference.split(";"):
        key, sep, value = segment.partition(":")
        key = key.strip().lower()
        if not sep or not key or key in result:
            continue
        result[key] = value.strip()
    return result


def parse_order_ids(reference: str | None) -> list[int]:
    """Order ids listed under "orders:" in a structured reference, in order, without repeats."""
    if not reference:
        return []
    match = _ORDERS_RE.search(reference)
    if not match:
        return []
    ids: list[int] = []
    for part in match.group(1).split(","):
        order_id = parse_positive_int(part)
        if order_id is not None and order_id not in ids:
            ids.append(order_id)
    return ids


def parse_tenant_id(reference: str | None) -> str | None:
    if not reference:
        return None
    match = _TENANT_RE.search(reference)
    return match.group(1).lower() if match else None


def parse_subscription_reference(reference: str | None) -> SubscriptionReference | None:
    """
    Parse "subscription:<tenant>;plan:<plan>;days:<n>".

    Returns None when the reference is not a subscription reference or lacks
    the tenant or the plan. An unparseable day count is reported as None.
    """
    if not reference or not reference.strip().lower().startswith("subscription:"):
        return None
    values = parse_key_values(reference)
    tenant_id = values.get("subscription")
    plan_id = values.get("plan")
    if not tenant_id or not plan_id:
        return None
    return SubscriptionReference(
        tenant_id=tenant_id,
        plan_id=plan_id.lower(),
        days=parse_positive_int(values.get("days")),
    )


def extract_link_fragments(*sources: str | None) -> list[str]:
    """
    Collect preference-id-like substrings from the given strings.

    Sources are scanned in order and the result keeps first-seen order without
    duplicates. Besides the "<digits>-<alnum>" pattern, the values of
    pref/preference/preference_id/pref_id keys ("pref:abc123", "pref_id=...")
    are taken verbatim. Fragments shorter than the minimum length are dropped
    because they would match unrelated payment links.
    """
    fragments: list[str] = []

    def _add(candidate: str) -> None:
        candidate = candidate.strip()
        if len(candidate) >= Limits.MIN_LINK_FRAGMENT_LENGTH and candidate not in fragments:
            fragments.append(candidate)

    for source in _non_empty(sources):
        for match in _PREFERENCE_ID_RE.finditer(source):
            _add(match.group(0))
        for key, value in _key_value_pairs(source):
            if key in _PREFERENCE_KEYS:
                _add(value)
    return fragments


def _non_empty(sources: Iterable[str | None]) -> Iterable[str]:
    for source in sources:
        if isinstance(source, str) and source.strip():
            yield source


def _key_value_pairs(source: str) -> Iterable[tuple[str, str]]:
    for segment in re.split(r"[;&?|\s]+", source):
        for sep in (":", "="):
            key, found, value = segment.partition(sep)
            if found:
                yield key.strip().lower(), value
                break
