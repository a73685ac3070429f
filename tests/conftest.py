"""Shared declaration tables for the typeshape test suite."""

from __future__ import annotations

from typing import Dict

import pytest

from typeshape.tools.model import FieldInfo, RecordKind, TypeInfo, UnionKind, VariantInfo


def table(*decls: TypeInfo) -> Dict[str, TypeInfo]:
    return {d.name: d for d in decls}


def record(name: str, *fields: FieldInfo) -> TypeInfo:
    return TypeInfo(name, RecordKind(fields))


PAYMENT = TypeInfo(
    "Payment",
    UnionKind(
        (
            VariantInfo("Card", (FieldInfo("card_number", "String"), FieldInfo("expiry", "String"))),
            VariantInfo("Cash", (FieldInfo("amount", "f64"),)),
        ),
        untagged=True,
    ),
)

ORDER = record("Order", FieldInfo("id", "i64"), FieldInfo("payment", "Payment"))

CONTACT = TypeInfo(
    "Contact",
    UnionKind(
        (
            VariantInfo("Email", (FieldInfo("email", "String"),)),
            VariantInfo("Phone", (FieldInfo("phone", "String"),)),
        ),
        untagged=True,
    ),
)

ORDER_DOC = {
    "declarations": [
        {
            "name": "Order",
            "kind": "record",
            "fields": [{"name": "id", "type": "i64"}, {"name": "payment", "type": "Payment"}],
        },
        {
            "name": "Payment",
            "kind": "union",
            "untagged": True,
            "variants": [
                {"name": "Card", "fields": [{"name": "card_number", "type": "String"}, {"name": "expiry", "type": "String"}]},
                {"name": "Cash", "fields": [{"name": "amount", "type": "f64"}]},
            ],
        },
    ]
}


@pytest.fixture
def user_decl() -> TypeInfo:
    return record("User", FieldInfo("name", "String"), FieldInfo("age", "i32"))


@pytest.fixture
def order_table() -> Dict[str, TypeInfo]:
    return table(ORDER, PAYMENT)


@pytest.fixture
def contact_table() -> Dict[str, TypeInfo]:
    return table(CONTACT)


@pytest.fixture
def order_doc() -> dict:
    return ORDER_DOC


@pytest.fixture
def card_sample() -> dict:
    return {"id": 7, "card_number": "4111", "expiry": "12/30"}
