"""
Variable declarations.

A ``Var`` tag compiles to a ``VariableSpec``; the variable store owns the
runtime value.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VariableType(StrEnum):
    """Declared variable types."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    COMPUTED = "computed"
    URL_PARAM = "urlParam"


class VariableSpec(BaseModel):
    """
    Declaration of a template variable.

    ``initial`` is already parsed from the attribute string. Computed variables
    carry an ``expression`` and the names it reads; url parameters carry the
    query ``param`` plus optional ``coerce``/``separator``.
    ``implicit`` variables are declared by ``Extract`` and hold any JSON value.
    """

    name: str
    type: VariableType
    initial: Any = None
    persist: bool = False
    expression: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    param: str | None = None
    default: Any = None
    coerce: str | None = None
    separator: str = ","
    implicit: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def is_readonly(self) -> bool:
        return self.type in (VariableType.URL_PARAM, VariableType.COMPUTED)
