from __future__ import annotations
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union
import weakref

from .errors import ParseError, TagParseErrorKind, TemplateError
from .jsonio import ensure_unique, validate
from .schema_models import TagAdapter, TagSetModel
from .templates import Template

def _is_valid_tag_char(c: str) -> bool:
    return c.isalnum() or c == "." or c.isspace()

def _is_numeric_subtag(sub: str) -> bool:
    return all(c.isnumeric() or c.isspace() for c in sub)

def _check_subtag(s: str, sub: str, offset: int, first: bool) -> None:
    if not sub.strip():
        raise ParseError(s, offset, TagParseErrorKind.SUB_TAG_EMPTY)
    if first and _is_numeric_subtag(sub):
        raise ParseError(s, offset, TagParseErrorKind.FIRST_TAG_NUMERIC)

def _normalize(s: str) -> str:
    if not s or s.isspace():
        raise ParseError(s, len(s), TagParseErrorKind.TAG_EMPTY)
    for i, c in enumerate(s):
        if not _is_valid_tag_char(c):
            raise ParseError(s, i, TagParseErrorKind.INVALID_CHARACTER)
    parts: List[str] = []
    offset = 0
    for n, sub in enumerate(s.split(".")):
        _check_subtag(s, sub, offset, n == 0)
        parts.append(sub.strip())
        offset += len(sub) + 1
    return ".".join(parts)

_INTERNED: "weakref.WeakValueDictionary[str, Tag]" = weakref.WeakValueDictionary()

@lru_cache(maxsize=16384)
def _parse_tag(s: str) -> "Tag":
    name = _normalize(s)
    t = _INTERNED.get(name)
    if t is None:
        t = object.__new__(Tag)
        object.__setattr__(t, "_name", name)
        _INTERNED[name] = t
    return t


class Tag:
    """
    A dot separated path of subtags, e.g. "Ability.Magic Theory.Exp".

    Subtags are trimmed, may contain spaces, and the first one can not be
    purely numeric ("Ability.0" is fine, "0.Ability" is not).
    Tags are immutable and interned: parsing the same text twice yields
    the same object.
    """

    __slots__ = ("_name", "__weakref__")

    def __new__(cls, s: Union[str, "Tag"]) -> "Tag":
        if isinstance(s, Tag):
            return s
        return _parse_tag(s)

    @classmethod
    def parse(cls, s: str) -> "Tag":
        return cls(s)

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError("Tag is immutable")

    def __reduce__(self):
        return (Tag, (self._name,))

    def __copy__(self) -> "Tag":
        return self

    def __deepcopy__(self, memo) -> "Tag":
        return self

    def __str__(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Tag({self._name!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Tag):
            return self._name == other._name
        return NotImplemented

    def __lt__(self, other: "Tag") -> bool:
        return self._name < other._name

    def __hash__(self) -> int:
        return hash(self._name)

    def to_string(self) -> str:
        return self._name

    # -------- hierarchy --------
    def subtags(self) -> List[str]:
        return self._name.split(".")

    def count_subtags(self) -> int:
        """ability.spell.Fireball -> 2, ability -> 0"""
        return self._name.count(".")

    def prefixes(self) -> List[str]:
        """Ability.Magic Theory -> ["Ability", "Ability.Magic Theory"]"""
        subs = self.subtags()
        return [".".join(subs[:i + 1]) for i in range(len(subs))]

    def root(self) -> "Tag":
        return Tag(self.subtags()[0])

    def parent(self) -> Optional["Tag"]:
        if "." not in self._name:
            return None
        return Tag(self._name.rsplit(".", 1)[0])

    def has_prefix(self, prefix: Union["Tag", str]) -> bool:
        p = str(prefix)
        return self._name == p or self._name.startswith(p + ".")

    def has_suffix(self, suffix: Union["Tag", str]) -> bool:
        s = str(suffix)
        return self._name == s or self._name.endswith("." + s)

    def add_prefix(self, prefix: Union["Tag", str]) -> "Tag":
        # prefix.name re-parses: a prefixed tag is only invalid if the prefix is
        return Tag(f"{prefix}.{self._name}")

    def add_suffix(self, suffix: Union["Tag", str]) -> "Tag":
        return Tag(f"{self._name}.{suffix}")

    def remove_prefix(self, prefix: Union["Tag", str]) -> Optional["Tag"]:
        """
        remove_prefix(ability.spell.Fireball.Exp, ability.spell) -> Fireball.Exp
        None when the prefix does not match or the remainder is not a valid tag.
        """
        p = str(prefix)
        if not self._name.startswith(p + "."):
            return None
        try:
            return Tag(self._name[len(p) + 1:])
        except ParseError:
            return None

    # -------- wire --------
    def to_json(self) -> str:
        return self._name

    @classmethod
    def from_json(cls, value: Any) -> "Tag":
        return cls(validate(TagAdapter, value))

    @staticmethod
    def find_all_parse_errors(s: str) -> List[ParseError]:
        """Every problem in s rather than the first one; empty when s is a valid tag."""
        if not s or s.isspace():
            return [ParseError(s, len(s), TagParseErrorKind.TAG_EMPTY)]
        res: List[ParseError] = []
        if _is_numeric_subtag(s.split(".")[0]) and s.split(".")[0].strip():
            res.append(ParseError(s, 0, TagParseErrorKind.FIRST_TAG_NUMERIC))
        for i, c in enumerate(s):
            if not _is_valid_tag_char(c):
                res.append(ParseError(s, i, TagParseErrorKind.INVALID_CHARACTER))
        offset = 0
        for sub in s.split("."):
            if not sub.strip():
                res.append(ParseError(s, offset, TagParseErrorKind.SUB_TAG_EMPTY))
            offset += len(sub) + 1
        return res


class TagSet:
    """
    Counts tags and every leading prefix of them, so adding a.b.c
    makes a, a.b and a.b.c present.
    Counts never drop below zero: removing more than was added leaves the tag absent.
    """

    def __init__(self) -> None:
        self._primary: Dict[Tag, int] = {}
        self._counts: Dict[str, int] = {}

    def count_tag(self, t: Tag) -> int:
        return self._counts.get(str(t), 0)

    def has_tag(self, t: Tag) -> bool:
        return self.count_tag(t) > 0

    def __contains__(self, t: Tag) -> bool:
        return self.has_tag(t)

    def add_tag_count(self, t: Tag, c: int) -> None:
        old = self._primary.get(t, 0)
        new = max(0, old + c)
        delta = new - old
        if delta == 0:
            return
        if new:
            self._primary[t] = new
        else:
            del self._primary[t]
        for p in t.prefixes():
            v = self._counts.get(p, 0) + delta
            if v > 0:
                self._counts[p] = v
            else:
                self._counts.pop(p, None)

    def remove_tag_count(self, t: Tag, c: int) -> None:
        self.add_tag_count(t, -c)

    def add_tag(self, t: Tag) -> None:
        self.add_tag_count(t, 1)

    def remove_tag(self, t: Tag) -> None:
        self.remove_tag_count(t, 1)

    def get_subtags(self, t: Optional[Tag] = None) -> List[Tag]:
        """get_subtags(ability) -> [ability.Latin, ability.Latin.Exp, ...]; all tags when t is None"""
        if t is None:
            return sorted(Tag(s) for s in self._counts)
        p = str(t) + "."
        return sorted(Tag(s) for s in self._counts if s.startswith(p))

    def get_immediate_subtags(self, t: Optional[Tag] = None) -> List[Tag]:
        depth = 0 if t is None else t.count_subtags() + 1
        return [s for s in self.get_subtags(t) if s.count_subtags() == depth]

    def iter_primary_tags(self) -> Iterator[Tuple[Tag, int]]:
        return iter(sorted(self._primary.items()))

    def __iter__(self) -> Iterator[Tag]:
        return iter(self.get_subtags())

    def __len__(self) -> int:
        return len(self._primary)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagSet):
            return NotImplemented
        return self._primary == other._primary

    def __repr__(self) -> str:
        return f"TagSet({ {str(k): v for k, v in self.iter_primary_tags()} })"

    def copy(self) -> "TagSet":
        res = TagSet()
        res._primary = dict(self._primary)
        res._counts = dict(self._counts)
        return res

    def layer(self, other: "TagSet") -> "TagSet":
        """Counts of both sets added together."""
        res = self.copy()
        for tag, count in other._primary.items():
            res.add_tag_count(tag, count)
        return res

    def to_json(self) -> Dict[str, int]:
        return {str(t): c for t, c in self.iter_primary_tags()}

    @classmethod
    def from_json(cls, value: Any) -> "TagSet":
        pairs = [(Tag(s), c) for s, c in validate(TagSetModel, value).root.items()]
        ensure_unique(str(t) for t, _ in pairs)
        res = cls()
        for t, c in pairs:
            res.add_tag_count(t, c)
        return res


class TagTemplate(Template[Tag]):
    """
    A tag whose subtags may be placeholders written as "[NAME]", e.g.
    "ability.[ability name].exp". Filling every placeholder yields a Tag;
    a filled placeholder may expand to several subtags.
    """

    def __init__(self, segments: List[Tuple[bool, str]]):
        # (is_placeholder, literal subtag or placeholder name)
        self._segments = list(segments)
        self._filled: Dict[str, Tag] = {}

    @classmethod
    def parse(cls, s: str) -> "TagTemplate":
        if not s or s.isspace():
            raise ParseError(s, len(s), TagParseErrorKind.TAG_EMPTY)
        segments: List[Tuple[bool, str]] = []
        offset = 0
        for n, sub in enumerate(s.split(".")):
            stripped = sub.strip()
            if stripped.startswith("[") and stripped.endswith("]") and len(stripped) >= 2:
                name = stripped[1:-1].strip()
                if not name:
                    raise ParseError(s, offset, TagParseErrorKind.SUB_TAG_EMPTY)
                if not all(c.isalnum() or c.isspace() for c in name):
                    raise ParseError(s, offset, TagParseErrorKind.INVALID_CHARACTER)
                segments.append((True, name))
            else:
                for i, c in enumerate(sub):
                    if not (c.isalnum() or c.isspace()):
                        raise ParseError(s, offset + i, TagParseErrorKind.INVALID_CHARACTER)
                _check_subtag(s, sub, offset, n == 0)
                segments.append((False, stripped))
            offset += len(sub) + 1
        return cls(segments)

    @property
    def placeholders(self) -> List[str]:
        return [v for is_ph, v in self._segments if is_ph]

    def get_required_inputs(self) -> Set[str]:
        return {p for p in self.placeholders if p not in self._filled}

    def is_template(self) -> bool:
        return bool(self.get_required_inputs())

    def fill_template_value(self, input_name: str, input_value: Tag) -> Optional[Tag]:
        if input_name in self.placeholders:
            self._filled[input_name] = input_value
        if self.get_required_inputs():
            return None
        return self._build()

    def attempt_complete(self) -> Tag:
        missing = self.get_required_inputs()
        if missing:
            raise TemplateError(missing)
        return self._build()

    def _build(self) -> Tag:
        return Tag(".".join(str(self._filled[v]) if is_ph else v for is_ph, v in self._segments))

    def to_string(self) -> str:
        out = []
        for is_ph, v in self._segments:
            if not is_ph:
                out.append(v)
            elif v in self._filled:
                out.append(str(self._filled[v]))
            else:
                out.append(f"[{v}]")
        return ".".join(out)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"TagTemplate({self.to_string()!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagTemplate):
            return NotImplemented
        return self._segments == other._segments and self._filled == other._filled

    def copy(self) -> "TagTemplate":
        res = TagTemplate(self._segments)
        res._filled = dict(self._filled)
        return res


def parse_tag_or_template(s: str) -> Union[Tag, TagTemplate]:
    """Plain tag text becomes a Tag; text containing [NAME] placeholders a TagTemplate."""
    if "[" in s or "]" in s:
        tt = TagTemplate.parse(s)
        if tt.placeholders:
            return tt
    return Tag(s)
