"""DRF exception handler that understands domain errors."""

from __future__ import annotations

import logging

from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler  # type: ignore

from shared.domain.exceptions import DomainError, InfrastructureError

logger = logging.getLogger(__name__)


def domain_exception_handler(exc, context):  # type: ignore
    """Render ``DomainError`` subclasses, defer everything else to DRF."""

    if isinstance(exc, DomainError):
        if isinstance(exc, InfrastructureError):
            view = context.get("view")
            logger.error(
                f"Infrastructure failure in {view.__class__.__name__ if view else 'unknown view'}: "
                f"{exc.code}",
                exc_info=exc.__cause__ or exc,
            )
        return Response(exc.to_dict(), status=exc.status_code)

    return exception_handler(exc, context)
