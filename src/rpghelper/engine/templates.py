from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Generic, Optional, Set, TypeVar, TYPE_CHECKING
if TYPE_CHECKING:
    from .tags import Tag

C = TypeVar("C")
T = TypeVar("T", bound="Template")

class Template(ABC, Generic[C]):
    """
    Something that becomes a concrete C once every named input has been supplied.
    Inputs are always tags (e.g. the spell chosen when an ability is learned).
    """

    @abstractmethod
    def get_required_inputs(self) -> Set[str]:
        ...

    @abstractmethod
    def fill_template_value(self, input_name: str, input_value: "Tag") -> Optional[C]:
        """Record one input; return the completed value once nothing is missing."""

    @abstractmethod
    def attempt_complete(self) -> C:
        """Complete without further input or raise TemplateError."""


class Templated(Generic[T, C]):
    """
    Two-state holder: still a template, or complete.
    Once complete it never goes back.
    """

    __slots__ = ("_template", "_complete", "_is_complete")

    def __init__(self, template: Optional[T] = None, complete: Optional[C] = None):
        if (template is None) == (complete is None):
            raise ValueError("Templated needs exactly one of template or complete")
        self._template = template
        self._complete = complete
        self._is_complete = complete is not None

    @classmethod
    def of_template(cls, template: T) -> "Templated[T, C]":
        return cls(template=template)

    @classmethod
    def of_complete(cls, value: C) -> "Templated[T, C]":
        return cls(complete=value)

    @property
    def is_complete(self) -> bool:
        return self._is_complete

    @property
    def template(self) -> Optional[T]:
        return None if self._is_complete else self._template

    def as_complete(self) -> Optional[C]:
        return self._complete if self._is_complete else None

    def insert_template_value(self, input_name: str, input_value: "Tag") -> None:
        if self._is_complete:
            return
        v = self._template.fill_template_value(input_name, input_value)
        if v is not None:
            self._set_complete(v)

    def get_required_inputs(self) -> Set[str]:
        if self._is_complete:
            return set()
        return self._template.get_required_inputs()

    def attempt_complete(self) -> C:
        if self._is_complete:
            return self._complete
        v = self._template.attempt_complete()
        self._set_complete(v)
        return v

    def _set_complete(self, v: C) -> None:
        self._complete = v
        self._template = None
        self._is_complete = True

    def __repr__(self) -> str:
        if self._is_complete:
            return f"Templated.Complete({self._complete!r})"
        return f"Templated.Template({self._template!r})"
