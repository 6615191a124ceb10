# Overview: Domain error taxonomy shared by services and routes.

"""
FrostPOS error taxonomy.

Every error a service raises on purpose is a DomainError. Each subclass has a
stable machine-readable `kind` and the HTTP status the routes answer with.
Services raise these inside the transaction attempt; run_with_retry() rolls the
session back before the error reaches the caller.
"""
from __future__ import annotations

from flask import jsonify


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationError(DomainError, ValueError):
    """400-level input problem or payment policy violation."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(DomainError, LookupError):
    """Referenced entity does not exist."""

    kind = "not_found"
    status_code = 404


class ConflictError(DomainError):
    """409-level state precondition violated (e.g., duplicate SKU, non-PENDING edit)."""

    kind = "conflict"
    status_code = 409


class InsufficientStockError(ConflictError):
    """Operation would drive a product's stock below zero."""

    kind = "insufficient_stock"
    status_code = 409


class InconsistentStateError(DomainError):
    """An invariant was found violated. Treat as a bug signal."""

    kind = "inconsistent_state"
    status_code = 500


class TransientFailureError(DomainError):
    """Lock or serialization contention persisted through every retry."""

    kind = "transient_failure"
    status_code = 503


def error_response(exc: DomainError):
    return jsonify(exc.to_dict()), exc.status_code
