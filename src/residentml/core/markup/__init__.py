"""
residentml markup compiler.

Usage:
    from residentml.core.markup import compile_template

    result = compile_template('<Var name="n" type="number" initial="0" /><ShowVar name="n" />')
    if result.success:
        template = result.template
"""

from residentml.core.markup.compiler import CompilationResult, compile_template
from residentml.core.markup.html_parser import MarkupLimitError, ParsedMarkup, parse_markup
from residentml.core.markup.tags import (
    RESIDENT_COMPONENTS,
    TagKind,
    TagRegistry,
    TagSpec,
    default_registry,
)

__all__ = [
    "CompilationResult",
    "MarkupLimitError",
    "ParsedMarkup",
    "RESIDENT_COMPONENTS",
    "TagKind",
    "TagRegistry",
    "TagSpec",
    "compile_template",
    "default_registry",
    "parse_markup",
]
