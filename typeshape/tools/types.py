"""Type expressions for typeshape.

Field types are kept as a small closed model instead of raw text:

- Prim(name)         primitives: String, bool, i32, f64, () ...
- Named(name, args)  user types and foreign generics: User, serde_json::Value,
                     HashMap<String, i64>
- OptionT(inner)     the optional wrapper (Option<T>)
- SeqT(elem)         the sequence wrapper (Vec<T>)
- Lit(value)         a literal string, used for synthetic `tag` discriminators

Wrapping and unwrapping are structural, so Option<Option<T>> can always be
collapsed back to Option<T>. Types render to Rust syntax.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union


# -------------------------
# Type model
# -------------------------

class Type:
    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Prim(Type):
    name: str

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class Named(Type):
    name: str
    args: Tuple[Type, ...] = ()

    def render(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}<{', '.join(a.render() for a in self.args)}>"


@dataclass(frozen=True)
class OptionT(Type):
    inner: Type

    def render(self) -> str:
        return f"Option<{self.inner.render()}>"


@dataclass(frozen=True)
class SeqT(Type):
    elem: Type

    def render(self) -> str:
        return f"Vec<{self.elem.render()}>"


@dataclass(frozen=True)
class Lit(Type):
    value: str

    def render(self) -> str:
        return json.dumps(self.value, ensure_ascii=False)


UNIT = Prim("()")

SIGNED_WIDTHS = {"i8": 8, "i16": 16, "i32": 32, "i64": 64, "i128": 128}
UNSIGNED_WIDTHS = {"u8": 8, "u16": 16, "u32": 32, "u64": 64, "u128": 128}

PRIMS = {
    "bool",
    "char",
    "str",
    "String",
    "f32",
    "f64",
    "isize",
    "usize",
    "()",
    *SIGNED_WIDTHS,
    *UNSIGNED_WIDTHS,
}

NUMERIC = {"f32", "f64", "isize", "usize", *SIGNED_WIDTHS, *UNSIGNED_WIDTHS}


# -------------------------
# Type parsing
# -------------------------

class _Tok:
    def __init__(self, kind: str, text: str) -> None:
        self.kind = kind
        self.text = text


def _tokenize(s: str) -> List[_Tok]:
    out: List[_Tok] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c.isspace():
            i += 1
            continue
        if c in "<>,":
            out.append(_Tok(c, c))
            i += 1
            continue
        if c == "(":
            j = i + 1
            while j < len(s) and s[j].isspace():
                j += 1
            if j < len(s) and s[j] == ")":
                out.append(_Tok("IDENT", "()"))
                i = j + 1
                continue
            raise ValueError(f"Tuple types are not supported at {i}: {s[i:i+10]!r}")
        if c == '"':
            j = i + 1
            while j < len(s) and s[j] != '"':
                j += 2 if s[j] == "\\" else 1
            if j >= len(s):
                raise ValueError(f"Unterminated literal at {i}: {s[i:i+10]!r}")
            out.append(_Tok("LIT", json.loads(s[i:j + 1])))
            i = j + 1
            continue
        # identifier, possibly a path like serde_json::Value
        j = i
        while j < len(s) and (s[j].isalnum() or s[j] == "_" or s[j] == ":"):
            j += 1
        if j == i:
            raise ValueError(f"Invalid type char at {i}: {s[i:i+10]!r}")
        out.append(_Tok("IDENT", s[i:j]))
        i = j
    return out


class _Parser:
    def __init__(self, toks: List[_Tok]) -> None:
        self.toks = toks
        self.i = 0

    def peek(self) -> Optional[_Tok]:
        return self.toks[self.i] if self.i < len(self.toks) else None

    def accept(self, kind: str) -> Optional[_Tok]:
        t = self.peek()
        if t is not None and t.kind == kind:
            self.i += 1
            return t
        return None

    def expect(self, kind: str) -> _Tok:
        t = self.peek()
        if t is None or t.kind != kind:
            raise ValueError(f"Expected {kind}, got {t.kind if t else 'EOF'}")
        self.i += 1
        return t

    def parse_type(self) -> Type:
        lit = self.accept("LIT")
        if lit is not None:
            return Lit(lit.text)
        name = self.expect("IDENT").text
        args: List[Type] = []
        if self.accept("<"):
            while True:
                args.append(self.parse_type())
                if self.accept(","):
                    continue
                self.expect(">")
                break
        if name == "Option" and len(args) == 1:
            return OptionT(args[0])
        if name == "Vec" and len(args) == 1:
            return SeqT(args[0])
        if name in PRIMS and not args:
            return Prim(name)
        return Named(name, tuple(args))


def parse_type_expr(expr: str) -> Type:
    toks = _tokenize(expr)
    p = _Parser(toks)
    ty = p.parse_type()
    if p.peek() is not None:
        raise ValueError(f"Unexpected tokens at end of type expr: {expr!r}")
    return ty


def as_type(value: Union[str, Type]) -> Type:
    if isinstance(value, Type):
        return value
    return parse_type_expr(value)


# -------------------------
# Wrappers
# -------------------------

def is_optional(ty: Type) -> bool:
    return isinstance(ty, OptionT)


def optional_of(ty: Type) -> Type:
    """Wrap in Option, never producing Option<Option<T>>."""
    ty = collapse_optional(ty)
    if isinstance(ty, OptionT):
        return ty
    return OptionT(ty)


def unwrap_optional(ty: Type) -> Type:
    if isinstance(ty, OptionT):
        return ty.inner
    return ty


def collapse_optional(ty: Type) -> Type:
    if isinstance(ty, OptionT):
        inner = collapse_optional(ty.inner)
        if isinstance(inner, OptionT):
            return inner
        return OptionT(inner)
    if isinstance(ty, SeqT):
        return SeqT(collapse_optional(ty.elem))
    if isinstance(ty, Named) and ty.args:
        return Named(ty.name, tuple(collapse_optional(a) for a in ty.args))
    return ty


def named_ref(ty: Type) -> Optional[str]:
    """Name of a plain user type reference (no generic args), else None."""
    if isinstance(ty, Named) and not ty.args:
        return ty.name
    return None


def int_width(ty: Type) -> Optional[Tuple[str, int]]:
    """(signedness, width) for fixed-width integer primitives."""
    if not isinstance(ty, Prim):
        return None
    if ty.name in SIGNED_WIDTHS:
        return ("i", SIGNED_WIDTHS[ty.name])
    if ty.name in UNSIGNED_WIDTHS:
        return ("u", UNSIGNED_WIDTHS[ty.name])
    return None
