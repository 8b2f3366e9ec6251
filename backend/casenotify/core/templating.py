"""
Jinja2 environment for notification templates.

WHAT: The sandboxed environment that parses and renders the subject and
body templates administrators store on notification rules.

WHY: Templates are written by console users and filled with case data
from the booking system. The sandbox keeps template code away from
Python internals, and rules only ever use plain ``{{name}}``
placeholders, so anything else is rejected when a rule is saved.

HOW: One SandboxedEnvironment shared by validation (schemas) and
rendering (TemplateRenderer). Missing names render as "(Not specified)"
through NotSpecified; every output value goes through format_value.
Jinja does not re-scan substituted output, and finalize breaks up any
``{{`` / ``}}`` inside values, so case data cannot inject placeholders.
"""

import re
from typing import Any, Set, Union

from jinja2 import TemplateSyntaxError, Undefined, meta, nodes
from jinja2.sandbox import SandboxedEnvironment


NOT_SPECIFIED = "(Not specified)"
LIST_SEPARATOR = ", "

_OPEN_RUN = re.compile(r"\{(?=\{)")
_CLOSE_RUN = re.compile(r"\}(?=\})")


def format_value(value: Any) -> str:
    """Render one case value as text; empty values become NOT_SPECIFIED."""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple, set)):
        value = LIST_SEPARATOR.join(str(item).strip() for item in value if str(item).strip())
    if value is None:
        return NOT_SPECIFIED
    text = str(value).strip()
    return text or NOT_SPECIFIED


def break_delimiters(text: str) -> str:
    """Split ``{{`` / ``}}`` runs so they can never be read as a placeholder."""
    return _CLOSE_RUN.sub("} ", _OPEN_RUN.sub("{ ", text))


class NotSpecified(Undefined):
    """Undefined that renders as the not-specified marker instead of an empty string."""

    __slots__ = ()

    def __str__(self) -> str:
        return NOT_SPECIFIED


def _finalize(value: Any) -> str:
    return break_delimiters(format_value(value))


# Plain text; HTML escaping happens in the email layout
template_env = SandboxedEnvironment(
    autoescape=False,
    undefined=NotSpecified,
    finalize=_finalize,
    keep_trailing_newline=True,
)
# Templates see only the values they are rendered with
template_env.globals.clear()


def check_placeholders(text: str) -> str:
    """
    Reject text that is anything but literal text and ``{{identifier}}`` placeholders.

    Raises:
        ValueError: Syntax error, stray delimiter, or a placeholder that
            is not a bare variable name (filters, attributes, blocks, comments)
    """
    if template_env.comment_start_string in text:
        raise ValueError("Template comments are not supported")
    try:
        ast = template_env.parse(text)
    except TemplateSyntaxError as e:
        raise ValueError(f"Invalid template: {e.message}") from e

    for node in ast.body:
        if not isinstance(node, nodes.Output):
            raise ValueError("Only {{name}} placeholders are supported")
        for child in node.nodes:
            if isinstance(child, nodes.TemplateData):
                if "{{" in child.data or "}}" in child.data:
                    raise ValueError("Unbalanced placeholder delimiters")
            elif not isinstance(child, nodes.Name):
                raise ValueError("Only {{name}} placeholders are supported")
    return text


def placeholder_names(template: Union[str, nodes.Template]) -> Set[str]:
    """Variable names a template (source or parsed) refers to."""
    if isinstance(template, str):
        template = template_env.parse(template)
    return meta.find_undeclared_variables(template)
