from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import EvalParseErrorKind, ParseError
from .tags import Tag

class ContainerKind(str, Enum):
    TAG = "tag"
    ATTRIBUTE = "attribute"
    EQUATION = "equation"
    CONDITIONAL = "conditional"
    MODIFIER = "modifier"
    VALUE = "value"   # effective number: attribute or equation, modifiers applied

@dataclass(frozen=True)
class Reference:
    """
    Address of one entry of a context: which container, and the tag path in it.
    Written as "kind:path", e.g. "equation:Ability.Latin".
    """
    kind: ContainerKind
    path: Tag

    @classmethod
    def parse(cls, s: str) -> "Reference":
        kind, sep, path = s.partition(":")
        if not sep:
            raise ParseError(s, len(s), EvalParseErrorKind.TOKEN_INVALID)
        try:
            k = ContainerKind(kind.strip().lower())
        except ValueError:
            raise ParseError(s, 0, EvalParseErrorKind.TOKEN_INVALID) from None
        return cls(k, Tag(path))

    @classmethod
    def of(cls, kind: Union[ContainerKind, str], path: Union[Tag, str]) -> "Reference":
        return cls(ContainerKind(kind), Tag(path))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.path}"
