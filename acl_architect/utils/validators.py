"""
Field validators for ACL entries.

Pure predicates shared by the pydantic models, the ACL editing service and the parser.
"""
import re

CIDR_PATTERN = re.compile(r"([0-9]{1,3}\.){3}[0-9]{1,3}(/[0-9]{1,2})?")
HOSTNAME_PATTERN = re.compile(r"([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}")
COMBINED_MASK_PATTERN = re.compile(r"[01.]+")
VARIABLE_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Prefix marking a combined rule as a case-insensitive regex
COMBINED_REGEX_MARKER = "~*"


def _compiles(pattern: str) -> bool:
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def validate_cidr(cidr: str) -> bool:
    """
    Check an IPv4 address or CIDR block.

    Leading zeros are accepted as long as every octet is in 0-255 and the
    optional prefix is in 0-32.
    """
    if not isinstance(cidr, str) or not CIDR_PATTERN.fullmatch(cidr):
        return False

    address, _, prefix = cidr.partition("/")
    if any(int(octet) > 255 for octet in address.split(".")):
        return False
    if prefix and int(prefix) > 32:
        return False
    return True


def validate_url_pattern(pattern: str, is_regex: bool) -> bool:
    """
    Check a URL ACL pattern.

    Regex patterns must compile; literal patterns must look like a dotted
    hostname (no wildcards). The empty string is never valid.
    """
    if not isinstance(pattern, str) or not pattern:
        return False

    if is_regex:
        return _compiles(pattern)

    return HOSTNAME_PATTERN.fullmatch(pattern) is not None


def validate_combined_pattern(pattern: str) -> bool:
    """
    Check a combined ACL rule pattern.

    Either a positional mask of '0', '1' and '.' characters over the
    concatenated source values, or a '~*' prefixed regular expression.
    """
    if not isinstance(pattern, str) or not pattern.strip():
        return False

    if pattern.startswith(COMBINED_REGEX_MARKER):
        return _compiles(pattern[len(COMBINED_REGEX_MARKER):])

    return COMBINED_MASK_PATTERN.fullmatch(pattern) is not None


def validate_variable_name(name: str) -> bool:
    """Check that a name can be used as an nginx variable."""
    return isinstance(name, str) and VARIABLE_NAME_PATTERN.fullmatch(name) is not None
