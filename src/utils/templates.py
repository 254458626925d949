"""
``{{variable}}`` template rendering for notification text.
"""

import re
from typing import Any, Dict, List, Optional

VARIABLE_PATTERN = re.compile(r"{{(\w+)}}")


def render_template(template: Optional[str], variables: Dict[str, Any]) -> str:
    """
    Substitute ``{{key}}`` placeholders for every key in ``variables``.

    None renders as an empty string; placeholders without a value are left intact.
    """
    if not template:
        return ""
    result = template
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", "" if value is None else str(value))
    return result


def extract_template_variables(template: Optional[str]) -> List[str]:
    """Unique placeholder names in order of first appearance."""
    seen: List[str] = []
    for name in VARIABLE_PATTERN.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen


def missing_variables(template: Optional[str], variables: Dict[str, Any]) -> List[str]:
    return [name for name in extract_template_variables(template) if name not in variables]
