"""Reading form validation package."""

from meterbill.validation.validator import ReadingFormValidator

__all__ = ["ReadingFormValidator"]
