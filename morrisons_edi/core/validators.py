"""
Field sanitization and validation tracking for document builds.

Missing business data never aborts a build. Each field goes through
``sanitize`` which substitutes a sentinel, and the ``ValidationTracker``
records the substitution so the dispatch gate can refuse to auto-send.
"""
import logging
from typing import Any, List

from morrisons_edi.core.models import InvalidField, ValidationResult, ValidationSummary

logger = logging.getLogger(__name__)

SENTINEL = 'UNDEFINED'


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings"""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def sanitize(value: Any, field_name: str, default: str = SENTINEL) -> ValidationResult:
    """
    Normalize a single field value.

    Args:
        value: Raw value from config, invoice, sale order or lookup table
        field_name: Qualified name reported back to the operator
        default: Substitute used when the value is missing

    Returns:
        ValidationResult; never raises
    """
    if is_blank(value):
        return ValidationResult(
            value=default,
            is_valid=False,
            field_name=field_name,
            original_value=value
        )

    text = value.strip() if isinstance(value, str) else str(value)
    return ValidationResult(
        value=text,
        is_valid=True,
        field_name=field_name,
        original_value=value
    )


class ValidationTracker:
    """
    Collects field results and warnings over the lifetime of one document build.
    Once any invalid field is recorded the tracker stays invalid.
    """

    def __init__(self):
        self.is_valid = True
        self.invalid_fields: List[InvalidField] = []
        self.warnings: List[str] = []

    def track(self, result: ValidationResult) -> str:
        """Record a sanitizer result and return the value to emit"""
        if not result.is_valid:
            self.mark_invalid(result.field_name, result.original_value, result.value)
        return result.value

    def validate(self, value: Any, field_name: str, default: str = SENTINEL) -> str:
        """Sanitize and track in one call"""
        return self.track(sanitize(value, field_name, default))

    def mark_invalid(self, field_name: str, original_value: Any = None,
                     replaced_with: str = SENTINEL):
        self.is_valid = False
        self.invalid_fields.append(
            InvalidField(
                field=field_name,
                original_value=original_value,
                replaced_with=replaced_with
            )
        )
        logger.warning(f"Field {field_name} replaced with {replaced_with!r}")

    def warn(self, message: str):
        self.warnings.append(message)
        logger.debug(f"Validation warning: {message}")

    def summary(self) -> ValidationSummary:
        return ValidationSummary(
            is_valid=self.is_valid,
            invalid_field_count=len(self.invalid_fields),
            invalid_fields=list(self.invalid_fields),
            warnings=list(self.warnings),
            has_undefined_data=not self.is_valid
        )
