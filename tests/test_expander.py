"""Shape expansion of records and unions."""

from conftest import CONTACT, ORDER, PAYMENT, record, table

from typeshape.tools.expander import ShapeExpander, expand
from typeshape.tools.model import FieldInfo, TypeInfo, UnionKind, VariantInfo
from typeshape.tools.types import Lit, Named, Prim


def _names(shapes):
    return [sorted(s.names()) for s in shapes]


class TestOptionalSubsets:
    def test_k_optional_fields_give_2_pow_k_distinct_shapes(self):
        decl = record(
            "Profile",
            FieldInfo("id", "i64"),
            FieldInfo("bio", "Option<String>"),
            FieldInfo("site", "String", optional=True),
            FieldInfo("age", "Option<u8>"),
        )
        shapes = expand(decl)
        assert len(shapes) == 8
        assert len({frozenset(s.names()) for s in shapes}) == 8
        assert all("id" in s.names() for s in shapes)

    def test_present_optional_field_is_required_and_unwrapped(self):
        decl = record("User", FieldInfo("email", "Option<String>"))
        shapes = expand(decl)
        assert shapes[1].fields[0].type == Prim("String")
        assert all(f.required for s in shapes for f in s.fields)

    def test_no_optional_fields_single_shape(self, user_decl):
        assert _names(expand(user_decl)) == [["age", "name"]]


class TestUnionInlining:
    def test_untagged_union_field_is_inlined_with_metadata(self):
        shapes = expand(ORDER, table(ORDER, PAYMENT))
        assert _names(shapes) == [["card_number", "expiry", "id"], ["amount", "id"]]
        for s in shapes:
            assert s.metadata.original_union_field_name == "payment"
            assert s.metadata.source_union_type == "Payment"

    def test_unknown_reference_stays_a_field(self):
        shapes = expand(ORDER, table(ORDER))
        assert len(shapes) == 1
        assert shapes[0].get("payment").type == Named("Payment")

    def test_optional_union_field_adds_branch_without_it(self):
        decl = record("Lead", FieldInfo("id", "i64"), FieldInfo("contact", "Option<Contact>"))
        shapes = expand(decl, table(decl, CONTACT))
        assert _names(shapes) == [["id"], ["id"], ["email", "id"], ["id"], ["id", "phone"]]

    def test_self_referential_union_is_bounded(self):
        node = TypeInfo(
            "Node",
            UnionKind(
                (
                    VariantInfo("Leaf", (FieldInfo("value", "i64"),)),
                    VariantInfo("Branch", (FieldInfo("child", "Node"),)),
                )
            ),
        )
        shapes = expand(node, table(node))
        assert _names(shapes) == [["value"], ["child"]]
        assert shapes[1].get("child").type == Named("Node")

    def test_flattened_record_is_inlined(self):
        meta = record("Meta", FieldInfo("created", "String"))
        outer = record("Outer", FieldInfo("id", "i64"), FieldInfo("meta", "Meta", flatten=True))
        shapes = expand(outer, table(outer, meta))
        assert _names(shapes) == [["created", "id"]]
        assert shapes[0].metadata.empty

    def test_inlined_names_already_present_are_skipped(self):
        dup = TypeInfo("Dup", UnionKind((VariantInfo("A", (FieldInfo("id", "String"), FieldInfo("a", "bool"))),)))
        decl = record("Holder", FieldInfo("id", "i64"), FieldInfo("dup", "Dup"))
        shapes = expand(decl, table(decl, dup))
        assert shapes[0].get("id").type == Prim("i64")
        assert sorted(shapes[0].names()) == ["a", "id"]


class TestVariants:
    def test_tagged_union_gets_literal_tag(self):
        status = TypeInfo(
            "Status",
            UnionKind((VariantInfo("Active", (FieldInfo("since", "String"),)), VariantInfo("Gone")), untagged=False),
        )
        shapes = expand(status)
        assert len(shapes) == 2
        assert shapes[0].fields[0].name == "tag"
        assert shapes[0].fields[0].type == Lit("Active")
        assert shapes[1].names() == ["tag"]
        assert shapes[1].fields[0].type == Lit("Gone")

    def test_untagged_unit_variants_are_skipped(self):
        u = TypeInfo("U", UnionKind((VariantInfo("Empty"), VariantInfo("Some", (FieldInfo("x", "i32"),)))))
        assert _names(expand(u)) == [["x"]]

    def test_expand_fields_without_declaration(self):
        shapes = ShapeExpander().expand_fields([FieldInfo("a", "String"), FieldInfo("b", "Option<bool>")])
        assert _names(shapes) == [["a"], ["a", "b"]]
