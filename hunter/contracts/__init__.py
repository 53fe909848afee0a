"""Named schemas and the shared contract validator."""

from .validator import SCHEMAS, validate

__all__ = ["SCHEMAS", "validate"]
