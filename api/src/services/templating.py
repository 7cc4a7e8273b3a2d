"""
Placeholder substitution for e-mail, calendar and Drive templates.

Templates use ``{{name}}`` placeholders. ``{{form_title}}`` is always
available; every key of the submission can be referenced by name.
Placeholders without a value are left untouched.
"""

import re
from typing import Any, Dict, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def format_value(value: Any) -> str:
    """Render a submission value as text: lists join with ", ", None is empty."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(item) for item in value)
    return str(value)


def build_context(
    form_title: str,
    data: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    context = {key: format_value(value) for key, value in (data or {}).items()}
    context["form_title"] = form_title or ""
    for key, value in (extra or {}).items():
        context[key] = format_value(value)
    return context


def interpolate(
    template: Optional[str],
    form_title: str,
    data: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Substitute placeholders in a template.

    Args:
        template: Template text; None renders as ""
        form_title: Value of {{form_title}}
        data: Submission values
        extra: Additional placeholders; these win over submission keys

    Returns:
        Rendered text
    """
    if not template:
        return ""

    context = build_context(form_title, data, extra)

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in context:
            return context[key]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)
