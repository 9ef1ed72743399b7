"""Translation of service exceptions into HTTP errors."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status

from ..data.repository import EntityNotFoundError

logger = logging.getLogger(__name__)


@contextmanager
def service_errors(action: str) -> Iterator[None]:
    """Map missing entities to 404, rejected input to 400 and anything else to 500."""

    try:
        yield
    except HTTPException:
        raise
    except EntityNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Error while trying to %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}: {exc}",
        ) from exc
