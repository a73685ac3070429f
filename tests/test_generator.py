"""Decision -> declarations, and request-scoped union amendment."""

import pytest

from conftest import PAYMENT, table

from typeshape.tools.generator import UnionWorkspace, field_info, generate
from typeshape.tools.model import (
    EvolutionError,
    FieldInfo,
    FieldShape,
    RecordWithExtendedUnion,
    SimpleRecord,
    TaggedUnion,
    Variant,
)
from typeshape.tools.types import Lit, Named, OptionT, Prim


class TestFieldInfo:
    def test_not_required_becomes_option(self):
        fi = field_info(FieldShape("email", "String", False))
        assert fi.type == OptionT(Prim("String"))
        assert fi.optional

    def test_already_optional_is_not_double_wrapped(self):
        fi = field_info(FieldShape("email", "Option<Option<String>>", False))
        assert fi.type == OptionT(Prim("String"))

    def test_literal_tag_is_emitted_as_string(self):
        assert field_info(FieldShape("tag", Lit("Card"))).type == Prim("String")


class TestGenerate:
    def test_simple_record(self):
        decls = generate(SimpleRecord("User", (FieldShape("name", "String"), FieldShape("age", "i32", False))))
        assert len(decls) == 1
        user = decls[0]
        assert user.is_record
        assert [(f.name, f.type.render(), f.optional) for f in user.kind.fields] == [
            ("name", "String", False),
            ("age", "Option<i32>", True),
        ]

    def test_union_variants_carry_common_fields(self):
        result = TaggedUnion(
            "Event",
            (FieldShape("id", "i64"),),
            (Variant("Variant1", (FieldShape("a", "String"),)), Variant("Variant2", (FieldShape("b", "bool"),))),
        )
        [decl] = generate(result)
        assert decl.is_untagged_union
        assert [[f.name for f in v.fields] for v in decl.kind.variants] == [["id", "a"], ["id", "b"]]

    def test_empty_variant_collapses_to_extra_record(self):
        result = TaggedUnion(
            "User",
            (FieldShape("id", "i64"),),
            (Variant("Variant1", ()), Variant("Variant2", (FieldShape("nick", "String"),))),
        )
        extra, main = generate(result)
        assert extra.name == "UserExtra"
        assert [f.name for f in extra.kind.fields] == ["nick"]
        assert main.name == "User"
        holder = main.kind.fields[-1]
        assert holder == FieldInfo("extra", OptionT(Named("UserExtra")), optional=True, flatten=True)

    def test_extended_union_result_yields_record_only(self):
        result = RecordWithExtendedUnion(
            "Order", (FieldShape("id", "i64"), FieldShape("payment", Named("Payment"))), "Payment", ()
        )
        [decl] = generate(result)
        assert decl.name == "Order"

    def test_unknown_result_type(self):
        with pytest.raises(EvolutionError):
            generate("not a result")


class TestUnionWorkspace:
    def test_extend_appends_and_renames_clashes(self):
        ws = UnionWorkspace(table(PAYMENT))
        updated = ws.extend(
            "Payment",
            [Variant("Card", (FieldShape("token", "String"),)), Variant("NewVariant3", (FieldShape("iban", "String"),))],
        )
        assert [v.name for v in updated.kind.variants] == ["Card", "Cash", "Card2", "NewVariant3"]
        assert ws.amended() == [updated]

    def test_repeated_extension_builds_on_the_copy(self):
        ws = UnionWorkspace(table(PAYMENT))
        ws.extend("Payment", [Variant("Card", ())])
        again = ws.extend("Payment", [Variant("Card", ())])
        assert [v.name for v in again.kind.variants] == ["Card", "Cash", "Card2", "Card3"]

    def test_caller_table_untouched(self):
        known = table(PAYMENT)
        UnionWorkspace(known).extend("Payment", [Variant("Transfer", (FieldShape("iban", "String"),))])
        assert known["Payment"] is PAYMENT
        assert len(PAYMENT.kind.variants) == 2

    def test_unknown_union(self):
        with pytest.raises(EvolutionError, match="no such union"):
            UnionWorkspace({}).extend("Missing", [])

    def test_apply_returns_record_and_amended_union(self):
        result = RecordWithExtendedUnion(
            "Order",
            (FieldShape("id", "i64"), FieldShape("payment", Named("Payment"))),
            "Payment",
            (Variant("NewVariant1", (FieldShape("iban", "String"),)),),
        )
        decls = UnionWorkspace(table(PAYMENT)).apply(result)
        assert [d.name for d in decls] == ["Order", "Payment"]
        assert decls[1].kind.variants[-1].name == "NewVariant1"
        assert decls[1].kind.untagged
