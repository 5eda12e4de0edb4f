"""
Exception -> HTTP mapping shared by the API routers.

Every error response carries `detail = {"code": ..., "message": ...}`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from treasurehunt.game.errors import GameRuleError, SessionClosed
from treasurehunt.store.base import StoreError, StoreNotFound

logger = logging.getLogger(__name__)


def http_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except HTTPException:
        raise
    except GameRuleError as e:
        raise http_error(409 if e.is_conflict else 400, e.code, e.message) from e
    except SessionClosed as e:
        raise http_error(404, "SESSION_CLOSED", str(e)) from e
    except ValueError as e:
        raise http_error(400, "VALIDATION_ERROR", str(e)) from e
    except StoreNotFound as e:
        raise http_error(404, "NOT_FOUND", str(e)) from e
    except StoreError as e:
        logger.warning("Store failure: %s", e)
        raise http_error(502, "STORE_ERROR", str(e)) from e
    except Exception as e:
        logger.exception("Unhandled API error")
        raise http_error(500, "INTERNAL_ERROR", str(e)) from e
