"""Validation helpers for nodedash."""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Tuple


def validate_url(url: str, schemes: List[str] | None = None) -> Tuple[bool, str]:
    """Validate URL format."""
    if schemes is None:
        schemes = ['http', 'https']
    if not url:
        return False, "URL is required"
    if not isinstance(url, str):
        return False, "URL must be a string"
    if len(url) > 2048:
        return False, "URL is too long"
    scheme_pattern = '|'.join(schemes)
    if not re.match(rf'^({scheme_pattern})://[^\s/]+[^\s]*$', url):
        return False, "Invalid URL format"
    return True, ""


def validate_image_reference(reference: str) -> Tuple[bool, str]:
    """Validate a container image reference such as ``ghcr.io/org/app:1.2``."""
    if not reference:
        return False, "Source URL is required"
    if not isinstance(reference, str):
        return False, "Source URL must be a string"
    if len(reference) > 512:
        return False, "Source URL is too long"
    if not re.match(r'^[a-zA-Z0-9][a-zA-Z0-9._/:@-]*$', reference):
        return False, "Source URL contains invalid characters"
    return True, ""


def validate_choices(values: Any, allowed: Iterable[str], label: str) -> Tuple[bool, str]:
    """Validate that ``values`` is a list drawn from ``allowed``."""
    if not isinstance(values, list):
        return False, f"{label} must be a list"
    allowed = list(allowed)
    invalid = [value for value in values if value not in allowed]
    if invalid:
        return False, f"Invalid {label.lower()}: {', '.join(str(value) for value in invalid)}"
    return True, ""


def validate_port(port: Any) -> Tuple[bool, str]:
    try:
        port_int = int(port)
    except (ValueError, TypeError):
        return False, "Port must be a valid integer"
    if port_int < 1 or port_int > 65535:
        return False, "Port must be between 1 and 65535"
    return True, ""


def validate_env_vars(env_vars: Any) -> Tuple[bool, str]:
    """Validate a mapping of environment variable names to scalar values."""
    if not isinstance(env_vars, dict):
        return False, "Environment variables must be an object"
    for key, value in env_vars.items():
        if not re.match(r'^[A-Za-z_][A-Za-z0-9_]*$', str(key)):
            return False, f"Invalid environment variable name: {key}"
        if isinstance(value, (dict, list)):
            return False, f"Environment variable {key} must be a scalar"
    return True, ""


def generate_slug(name: str) -> str:
    """Lowercase ``name`` and collapse non-alphanumeric runs to ``-``."""
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower())
    return slug.strip('-')


def sanitize_string(value: str, max_length: int = 255) -> str:
    """Sanitize string input."""
    if not value:
        return ""
    value = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', str(value))
    return value[:max_length].strip()
