"""Shared Pydantic schemas for CertAnchor."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "certanchor"


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: str = ""
