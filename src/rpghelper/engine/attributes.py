from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Set, Union

from .jsonio import ensure_unique, validate
from .schema_models import AttributeModel, AttributeSetAdapter
from .tags import Tag, TagTemplate
from .templates import Template

class Attribute:
    """A named stored number, e.g. Ability.Latin.Exp = 25."""

    __slots__ = ("name", "value")

    def __init__(self, name: Union[Tag, str], value: float):
        self.name = Tag(name)
        self.value = float(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attribute):
            return NotImplemented
        return self.name == other.name and self.value == other.value

    def __repr__(self) -> str:
        return f"Attribute({str(self.name)!r}, {self.value!r})"

    def to_json(self) -> Dict[str, Any]:
        return AttributeModel(name=str(self.name), value=self.value).model_dump()

    @classmethod
    def from_json(cls, value: Any) -> "Attribute":
        m = validate(AttributeModel, value)
        return cls(Tag(m.name), m.value)


class AttributeSet:
    def __init__(self, attributes: Optional[List[Attribute]] = None) -> None:
        self._attributes: Dict[Tag, Attribute] = {}
        for a in attributes or []:
            self._attributes[a.name] = a

    def get(self, name: Tag) -> Optional[Attribute]:
        return self._attributes.get(name)

    def get_value(self, name: Tag) -> Optional[float]:
        a = self._attributes.get(name)
        return a.value if a is not None else None

    def has_attribute(self, name: Tag) -> bool:
        return name in self._attributes

    def __contains__(self, name: Tag) -> bool:
        return name in self._attributes

    def set_attribute(self, name: Tag, value: float) -> Optional[Attribute]:
        """Insert or overwrite; returns the replaced attribute."""
        old = self._attributes.get(name)
        self._attributes[name] = Attribute(name, value)
        return old

    def remove_attribute(self, name: Tag) -> Optional[Attribute]:
        return self._attributes.pop(name, None)

    def names(self) -> List[Tag]:
        return sorted(self._attributes)

    def __iter__(self) -> Iterator[Attribute]:
        for k in sorted(self._attributes):
            yield self._attributes[k]

    def __len__(self) -> int:
        return len(self._attributes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeSet):
            return NotImplemented
        return self._attributes == other._attributes

    def __repr__(self) -> str:
        return f"AttributeSet({list(self)!r})"

    def copy(self) -> "AttributeSet":
        return AttributeSet([Attribute(a.name, a.value) for a in self._attributes.values()])

    def add_prefix(self, prefix: Union[Tag, str]) -> "AttributeSet":
        """
        Same values under `prefix.` names, e.g. date.year -> lhs.date.year.
        Used to put two records side by side in one context for comparison.
        """
        p = Tag(prefix)
        return AttributeSet([Attribute(a.name.add_prefix(p), a.value) for a in self._attributes.values()])

    def to_json(self) -> List[Dict[str, Any]]:
        return [a.to_json() for a in self]

    @classmethod
    def from_json(cls, value: Any) -> "AttributeSet":
        models = validate(AttributeSetAdapter, value)
        ensure_unique(str(Tag(m.name)) for m in models)
        return cls([Attribute(Tag(m.name), m.value) for m in models])


class AttributeTemplate(Template[Attribute]):
    """An attribute whose name still has placeholders; completes with its default value."""

    def __init__(self, name_template: Union[TagTemplate, str], default_value: float = 0.0):
        if isinstance(name_template, str):
            name_template = TagTemplate.parse(name_template)
        self.name_template = name_template
        self.default_value = float(default_value)

    def get_required_inputs(self) -> Set[str]:
        return self.name_template.get_required_inputs()

    def fill_template_value(self, input_name: str, input_value: Tag) -> Optional[Attribute]:
        name = self.name_template.fill_template_value(input_name, input_value)
        if name is None:
            return None
        return Attribute(name, self.default_value)

    def attempt_complete(self) -> Attribute:
        return Attribute(self.name_template.attempt_complete(), self.default_value)

    def __repr__(self) -> str:
        return f"AttributeTemplate({str(self.name_template)!r}, {self.default_value!r})"
