"""Error types raised by the services and their JSON rendering."""
from __future__ import annotations

import logging
from typing import Any

import pydantic
from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class FamTreeError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(FamTreeError):
    status_code = 400


class UnsupportedVersionError(ValidationError):
    pass


class NotFoundError(FamTreeError):
    status_code = 404


class AuthError(FamTreeError):
    status_code = 401


class PermissionDeniedError(FamTreeError):
    status_code = 403


class ConflictError(FamTreeError):
    status_code = 409


def from_pydantic(exc: pydantic.ValidationError, message: str = "Invalid payload") -> ValidationError:
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return ValidationError(message, details=details)


def register_error_handlers(app) -> None:
    @app.errorhandler(FamTreeError)
    def _handle_famtree_error(exc: FamTreeError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(413)
    def _handle_too_large(exc):
        return jsonify({"error": "Upload too large"}), 413

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500
