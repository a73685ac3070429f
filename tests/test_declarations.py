"""Declaration table validation, parsing and canonical output."""

import copy
import json

import pytest

from typeshape.tools import declarations
from typeshape.tools.declarations import (
    DeclarationError,
    declaration_to_dict,
    describe,
    dumps_declarations,
    load_declarations,
    load_schema,
    parse_declarations,
    validate,
)
from typeshape.tools.types import Named, OptionT, Prim


def test_bundled_schema_loads():
    schema = load_schema()
    assert schema["$schema"].endswith("2020-12/schema")
    assert "declaration" in schema["$defs"]


class TestParse:
    def test_parse_order_table(self, order_doc):
        parsed = parse_declarations(order_doc)
        assert list(parsed) == ["Order", "Payment"]
        order = parsed["Order"]
        assert order.is_record
        assert order.kind.fields[1].type == Named("Payment")
        payment = parsed["Payment"]
        assert payment.is_untagged_union
        assert [v.name for v in payment.kind.variants] == ["Card", "Cash"]

    def test_optional_flag_and_option_type_agree(self):
        doc = {
            "declarations": [
                {
                    "name": "User",
                    "kind": "record",
                    "span": [0, 40],
                    "fields": [
                        {"name": "email", "type": "String", "optional": True},
                        {"name": "nick", "type": "Option<String>"},
                    ],
                }
            ]
        }
        user = parse_declarations(doc)["User"]
        assert [f.type for f in user.kind.fields] == [OptionT(Prim("String"))] * 2
        assert all(f.optional for f in user.kind.fields)
        assert user.span == (0, 40)

    def test_unit_variant(self):
        doc = {"declarations": [{"name": "S", "kind": "union", "untagged": False, "variants": [{"name": "Off"}]}]}
        s = parse_declarations(doc)["S"]
        assert s.kind.variants[0].is_unit
        assert not s.is_untagged_union


class TestInvalid:
    def test_schema_issue_has_pointer(self):
        doc = {"declarations": [{"name": "User", "kind": "record"}]}
        issues = validate(doc)
        assert issues
        assert issues[0]["pointer"] == "/declarations/0"
        assert "fields" in issues[0]["message"]

    def test_unknown_top_level_key(self):
        issues = validate({"declarations": [], "extra": 1})
        assert issues[0]["validator"] == "additionalProperties"

    def test_bad_type_expression(self):
        doc = {"declarations": [{"name": "U", "kind": "record", "fields": [{"name": "x", "type": "Vec<"}]}]}
        with pytest.raises(DeclarationError) as exc:
            parse_declarations(doc)
        assert exc.value.issues[0]["pointer"] == "/declarations/0/fields/0/type"

    def test_duplicate_declaration(self, order_doc):
        doc = copy.deepcopy(order_doc)
        doc["declarations"].append(copy.deepcopy(doc["declarations"][0]))
        with pytest.raises(DeclarationError) as exc:
            parse_declarations(doc)
        assert exc.value.issues[0]["pointer"] == "/declarations/2/name"

    def test_duplicate_field_and_reversed_span(self):
        doc = {
            "declarations": [
                {
                    "name": "U",
                    "kind": "record",
                    "span": [9, 3],
                    "fields": [{"name": "x", "type": "i32"}, {"name": "x", "type": "i64"}],
                }
            ]
        }
        with pytest.raises(DeclarationError) as exc:
            parse_declarations(doc)
        pointers = [i["pointer"] for i in exc.value.issues]
        assert pointers == ["/declarations/0/span", "/declarations/0/fields/1/name"]


class TestDump:
    def test_round_trip_is_stable(self, order_doc):
        text = dumps_declarations(parse_declarations(order_doc).values())
        assert text.endswith("\n")
        again = dumps_declarations(parse_declarations(json.loads(text)).values())
        assert again == text

    def test_optional_keys_only_when_set(self):
        doc = {
            "declarations": [
                {
                    "name": "U",
                    "kind": "record",
                    "fields": [{"name": "kind", "type": "String", "rename": "type", "flatten": True}],
                }
            ]
        }
        out = declaration_to_dict(parse_declarations(doc)["U"])
        assert out == {
            "name": "U",
            "kind": "record",
            "fields": [{"name": "kind", "type": "String", "rename": "type", "flatten": True}],
        }

    def test_describe(self, order_doc):
        parsed = parse_declarations(order_doc)
        assert describe(parsed["Payment"]) == "Payment: untagged union, 2 variant(s)"
        assert describe(parsed["Order"]) == "Order: record (0 optional) {id: i64, payment: Payment}"


class TestCli:
    def test_check_ok(self, tmp_path, order_doc, capsys):
        path = tmp_path / "decls.json"
        path.write_text(json.dumps(order_doc), encoding="utf-8")
        assert declarations.main([str(path)]) == 0
        assert "Payment: untagged union" in capsys.readouterr().out
        assert load_declarations(path)["Order"].is_record

    def test_check_invalid_json_errors(self, tmp_path, capsys):
        path = tmp_path / "decls.json"
        path.write_text(json.dumps({"declarations": [{"name": "U", "kind": "record"}]}), encoding="utf-8")
        assert declarations.main([str(path), "--json-errors"]) == 2
        issues = json.loads(capsys.readouterr().err)
        assert issues[0]["pointer"] == "/declarations/0"

    def test_check_unreadable(self, tmp_path):
        assert declarations.main([str(tmp_path / "missing.json")]) == 3
