"""JSON-schema merge path: record generation and extension of known records."""

import json

import pytest

from conftest import CONTACT, record, table

from typeshape.tools import schema_merge
from typeshape.tools.events import CollectingSink
from typeshape.tools.model import EvolutionError, FieldInfo, RecordKind, TypeInfo
from typeshape.tools.schema_merge import (
    NULL_TYPE,
    NUMBER,
    STRING,
    JsonType,
    MergeStrategy,
    RecordGenerator,
    analyze_json,
    classify_fields,
    compatible_type,
    merge_sample,
    merge_types,
    similarity,
    singular_name,
)
from typeshape.tools.types import Named, OptionT, Prim, SeqT


def _fields(decl):
    return [(f.name, f.type.render()) for f in decl.kind.fields]


class TestAnalyze:
    def test_scalars(self):
        assert analyze_json("x") == STRING
        assert analyze_json(3) == NUMBER
        assert analyze_json(None).kind == "null"
        assert analyze_json(True).kind == "boolean"

    def test_array_elements_merge(self):
        t = analyze_json([{"a": 1}, {"a": None, "b": "x"}])
        assert t.kind == "array"
        assert t.elem == JsonType("object", fields=(("a", NUMBER), ("b", STRING)))

    def test_empty_array_has_null_element(self):
        assert analyze_json([]).elem.kind == "null"

    def test_conflicts_become_string(self):
        assert merge_types(NUMBER, analyze_json(True)) == STRING
        assert merge_types(analyze_json(None), NUMBER) == NUMBER


class TestNaming:
    @pytest.mark.parametrize(
        "plural,singular", [("Users", "User"), ("Categories", "Category"), ("Address", "AddressItem"), ("Data", "DataItem")]
    )
    def test_singular_name(self, plural, singular):
        assert singular_name(plural) == singular


class TestGenerate:
    def test_nested_objects_and_arrays(self):
        decls = merge_sample({"userName": "x", "tags": ["a"], "address": {"city": "c"}, "score": 1.5}, "Root")
        assert [d.name for d in decls] == ["Address", "Root"]
        root = decls[1]
        assert _fields(root) == [
            ("user_name", "String"),
            ("tags", "Vec<String>"),
            ("address", "Address"),
            ("score", "f64"),
        ]
        assert root.kind.fields[0].rename == "userName"
        assert root.kind.fields[1].rename is None

    def test_null_becomes_optional_json_value(self):
        [decl] = merge_sample({"deleted_at": None}, "Row")
        f = decl.kind.fields[0]
        assert f.type == NULL_TYPE
        assert f.optional

    def test_root_array(self):
        decls = merge_sample([{"id": 1}, {"id": 2, "tag": "x"}], "Users")
        assert [d.name for d in decls] == ["User", "Users"]
        assert _fields(decls[0]) == [("id", "f64"), ("tag", "String")]
        assert decls[1].kind.fields[0].type == SeqT(Named("User"))

    def test_array_of_objects_uses_singular_name(self):
        decls = merge_sample({"categories": [{"slug": "a"}]}, "Catalog")
        assert [d.name for d in decls] == ["Category", "Catalog"]
        assert decls[1].kind.fields[0].type == SeqT(Named("Category"))

    def test_duplicate_names_get_suffix(self):
        decls = merge_sample({"a": {"x": 1}, "b": {"a": {"y": 2}}}, "Root")
        assert [d.name for d in decls] == ["A", "A2", "B", "Root"]

    def test_scalar_root(self):
        [decl] = merge_sample(42, "Answer")
        assert _fields(decl) == [("value", "f64")]


class TestExtension:
    def existing(self):
        return table(
            record("User", FieldInfo("name", "String"), FieldInfo("age", "i32"), FieldInfo("nickname", "String"))
        )

    def test_optional_strategy(self):
        [user] = merge_sample({"name": "J", "age": 30, "email": "e"}, "User", self.existing())
        assert _fields(user) == [
            ("name", "String"),
            ("age", "i32"),
            ("nickname", "Option<String>"),
            ("email", "Option<String>"),
        ]

    def test_union_strategy(self):
        union, user = merge_sample({"name": "J", "age": 30, "email": "e"}, "User", self.existing(), "union")
        assert union.name == "UserVariant"
        assert union.is_untagged_union
        assert [(v.name, [f.name for f in v.fields]) for v in union.kind.variants] == [
            ("Legacy", ["nickname"]),
            ("Current", ["email"]),
        ]
        holder = user.kind.fields[-1]
        assert holder.name == "schema_variant"
        assert holder.type == Named("UserVariant")
        assert not holder.optional

    def test_hybrid_uses_optional_for_few_conflicts(self):
        decls = merge_sample({"name": "J", "age": 30, "email": "e"}, "User", self.existing(), "hybrid")
        assert [d.name for d in decls] == ["User"]

    def test_hybrid_uses_union_for_many_conflicts(self):
        sample = {"name": "J", "a": 1, "b": 2, "c": 3}
        decls = merge_sample(sample, "User", self.existing(), MergeStrategy.HYBRID)
        assert [d.name for d in decls] == ["UserVariant", "User"]

    def test_similar_record_is_extended(self):
        known = table(record("Person", FieldInfo("name", "String"), FieldInfo("age", "i32")))
        sink = CollectingSink()
        [decl] = merge_sample({"name": "x", "age": 3}, "Root", known, events=sink)
        assert decl.name == "Person"
        assert _fields(decl) == [("name", "String"), ("age", "i32")]
        assert sink.of_kind("merge.similar")[0].detail["record"] == "Person"

    def test_dissimilar_record_is_left_alone(self):
        known = table(record("Person", FieldInfo("name", "String"), FieldInfo("age", "i32")))
        [decl] = merge_sample({"sku": "x", "price": 3}, "Item", known)
        assert decl.name == "Item"

    def test_only_records_can_be_extended(self):
        gen = RecordGenerator()
        with pytest.raises(EvolutionError, match="Cannot extend Contact"):
            gen.extend(CONTACT, [FieldInfo("email", "String")])

    def test_span_is_kept(self):
        known = table(TypeInfo("User", RecordKind((FieldInfo("name", "String"),)), (10, 50)))
        [user] = merge_sample({"name": "x"}, "User", known)
        assert user.span == (10, 50)


class TestHelpers:
    def test_compatible_type(self):
        assert compatible_type(Prim("i32"), Prim("f64")) == Prim("i32")
        assert compatible_type(OptionT(Prim("u8")), Prim("f64")) == OptionT(Prim("u8"))
        assert compatible_type(Prim("String"), NULL_TYPE) == OptionT(Prim("String"))
        assert compatible_type(Prim("String"), OptionT(Prim("String"))) == OptionT(Prim("String"))
        assert compatible_type(Prim("bool"), Prim("String")) == Prim("String")

    def test_similarity(self):
        old = [FieldInfo("name", "String"), FieldInfo("age", "i32")]
        assert similarity(old, [FieldInfo("name", "String"), FieldInfo("age", "f64")]) == pytest.approx(0.75)
        assert similarity(old, [FieldInfo("sku", "String")]) == 0.0

    def test_classify(self):
        cls = classify_fields(
            [FieldInfo("a", "String"), FieldInfo("b", "String")], [FieldInfo("b", "String"), FieldInfo("c", "bool")]
        )
        assert [f.name for f in cls.common] == ["b"]
        assert [f.name for f in cls.old_only] == ["a"]
        assert [f.name for f in cls.new_only] == ["c"]
        assert cls.conflicting == 2

    def test_strategy_parse(self):
        assert MergeStrategy.parse("UNION") is MergeStrategy.UNION
        with pytest.raises(ValueError, match="Unknown merge strategy"):
            MergeStrategy.parse("both")


def test_merge_cli(tmp_path, capsys):
    sample = tmp_path / "sample.json"
    sample.write_text(json.dumps({"id": 1, "owner": {"login": "x"}}), encoding="utf-8")
    assert schema_merge.main([str(sample), "--name", "Repo", "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert [d["name"] for d in out["declarations"]] == ["Owner", "Repo"]

    assert schema_merge.main([str(sample), "--name", "Repo"]) == 0
    assert "pub struct Owner {" in capsys.readouterr().out

    assert schema_merge.main([str(tmp_path / "missing.json"), "--name", "Repo"]) == 3
