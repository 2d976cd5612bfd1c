"""
Validation and auto-repair of nginx configuration text.

Some proxy builds reject a conditional written as an equality test against
0 (`if ($var = 0)` / `if=$var = 0`). Those are rewritten to the supported
`!= 1` form. Brace balance is a hard error; the missing-semicolon check is
advisory only.
"""
import re
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# if=$var = 0   (access_log condition parameter)
EQUALS_ZERO_PARAM = re.compile(r"if=\$([A-Za-z_][A-Za-z0-9_]*)\s*=\s*0(?![0-9])")
# if ($var = 0)
EQUALS_ZERO_PARENS = re.compile(r"if\s*\(\s*\$([A-Za-z_][A-Za-z0-9_]*)\s*=\s*0\s*\)")


class ValidationResult(BaseModel):
    """Outcome of validate_nginx_config. Warnings never affect is_valid."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def _strip_comment(line: str) -> str:
    """Drop a trailing # comment that is not inside quotes."""
    quote: Optional[str] = None
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == "#":
            return line[:i].rstrip()
    return line


def count_braces(config_text: str):
    """Count '{' and '}' outside comments and quoted strings."""
    opening = closing = 0
    for raw in config_text.splitlines():
        quote: Optional[str] = None
        escaped = False
        for ch in raw:
            if quote:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == quote:
                    quote = None
            elif ch in ('"', "'"):
                quote = ch
            elif ch == "#":
                break
            elif ch == "{":
                opening += 1
            elif ch == "}":
                closing += 1
    return opening, closing


def find_unsupported_conditions(config_text: str) -> List[str]:
    """Describe each equality-against-zero conditional in the text."""
    issues = []
    for match in EQUALS_ZERO_PARAM.finditer(config_text):
        line = config_text.count("\n", 0, match.start()) + 1
        issues.append(f'Line {line} contains unsupported "=" in condition: {match.group(0)}')
    for match in EQUALS_ZERO_PARENS.finditer(config_text):
        line = config_text.count("\n", 0, match.start()) + 1
        issues.append(f'Line {line} contains unsupported "=" in condition: {match.group(0)}')
    return issues


def find_missing_semicolons(config_text: str) -> List[str]:
    """Heuristic: directive lines that neither end in ';' nor open/close a block."""
    warnings = []
    lines = config_text.splitlines()
    for i, raw in enumerate(lines):
        line = _strip_comment(raw.strip())
        if not line or line in ("{", "}"):
            continue
        if line.endswith(";") or line.endswith("{") or line.endswith("}") or " {" in line:
            continue
        if line.startswith("if"):
            continue
        # Multi-line quoted values (log_format) continue on the next line
        following = next((l.strip() for l in lines[i + 1:] if l.strip()), "")
        if following[:1] in ('"', "'"):
            continue
        warnings.append(f"Line {i + 1} might be missing a semicolon: {line}")
    return warnings


def validate_nginx_config(config_text: str) -> ValidationResult:
    """
    Check configuration text without modifying it.

    Args:
        config_text: The nginx configuration to validate

    Returns:
        ValidationResult with errors (unsupported conditionals, unbalanced
        braces) and advisory warnings (possible missing semicolons)
    """
    errors = find_unsupported_conditions(config_text)

    opening, closing = count_braces(config_text)
    if opening != closing:
        errors.append(f"Unbalanced braces: {opening} opening vs {closing} closing")

    warnings = find_missing_semicolons(config_text)
    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def fix_nginx_config(config_text: str) -> str:
    """Rewrite equality-against-zero conditionals to the supported '!= 1' form."""
    fixed = EQUALS_ZERO_PARAM.sub(lambda m: f"if=${m.group(1)} != 1", config_text)
    fixed = EQUALS_ZERO_PARENS.sub(lambda m: f"if (${m.group(1)} != 1)", fixed)
    return fixed


def validate_and_fix_nginx_config(config_text: str) -> str:
    """
    Repair unsupported conditionals, returning the text unchanged when none are found.

    Brace imbalance is never repaired; validate_nginx_config reports it.
    """
    issues = find_unsupported_conditions(config_text)
    if not issues:
        return config_text

    logger.warning(f"Fixed {len(issues)} issues in nginx configuration: {issues}")
    return fix_nginx_config(config_text)
