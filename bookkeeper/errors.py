from typing import Any, Dict, Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """An error that is reported to the caller as a JSON body."""

    status = 400

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None,
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.code = code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class NotFound(ApiError):
    status = 404


class Forbidden(ApiError):
    status = 403


class JournalValidationError(ApiError):
    """Journal lines that cannot be saved or posted."""


class LedgerStateError(ApiError):
    """An operation that the entry's current status does not allow."""


class AmountOutOfRange(ApiError):
    """A money value too large to store with two decimal places."""

    def __init__(self, amount):
        super().__init__("Amount is too large", code="VALIDATION_ERROR", extra={"field": "amount"})
        self.amount = amount


def register_error_handlers(app) -> None:
    from .extensions import db

    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        db.session.rollback()
        return jsonify(err.to_dict()), err.status

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        return jsonify({"message": err.description or err.name}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error: %s", err)
        return jsonify({"message": "Internal server error"}), 500
