"""
Validated Pydantic Schemas for the Plantwatch API
=================================================
Shared base models and field validators for request/response schemas.

- JSON field names are camelCase on the wire; snake_case is accepted too
- Free-text fields are sanitized and screened for script injection
- Request models reject unknown fields
"""

import re

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# =============================================================================
# SECURITY PATTERNS - Block XSS in free text
# =============================================================================

XSS_PATTERNS = [
    r"(<\s*script[^>]*>)",  # <script> tags
    r"(<\s*/\s*script\s*>)",  # </script> tags
    r"(javascript\s*:)",  # javascript: protocol
    r"(<[^>]+\bon\w+\s*=)",  # inline event handlers (onclick, onerror, ...)
    r"(<\s*iframe[^>]*>)",  # <iframe> tags
    r"(<\s*object[^>]*>)",  # <object> tags
    r"(<\s*embed[^>]*>)",  # <embed> tags
]

XSS_PATTERN = re.compile("|".join(XSS_PATTERNS), re.IGNORECASE)


def validate_no_script(value: str, field_name: str = "field") -> str:
    """
    Reject strings that carry markup capable of executing script.
    Raises ValueError if a pattern is detected.
    """
    if not isinstance(value, str):
        return value

    if XSS_PATTERN.search(value):
        raise ValueError(f"{field_name} contains potentially malicious script patterns")

    return value


def sanitize_string(value: str) -> str:
    """
    Basic string sanitization - strip whitespace and null bytes.
    """
    if not isinstance(value, str):
        return value

    return value.strip().replace("\x00", "")


# =============================================================================
# BASE MODELS
# =============================================================================

class CamelModel(BaseModel):
    """Response base: camelCase aliases, readable straight from ORM rows."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ValidatedModel(BaseModel):
    """Request base with common validation configuration."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_default=True,
        extra="forbid",  # Reject unknown fields
    )
