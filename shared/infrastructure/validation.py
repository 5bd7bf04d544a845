"""Run DRF serializers so that input errors surface as domain validation errors."""

from __future__ import annotations

from typing import Any

from shared.domain.exceptions import RequestValidationError


def validated_data(serializer_class, data: Any, **kwargs: Any) -> dict:  # type: ignore
    """Validate ``data`` and return the cleaned values, or raise ``RequestValidationError`` (422)."""
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        errors = {
            field: [str(message) for message in messages] if isinstance(messages, list) else [str(messages)]
            for field, messages in serializer.errors.items()
        }
        raise RequestValidationError(errors)
    return serializer.validated_data
