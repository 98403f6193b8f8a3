"""Uniform ``{"detail": {"code", "message"}}`` error bodies."""

from __future__ import annotations

from fastapi import HTTPException


def api_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


__all__ = ["api_error"]
