"""
app/errors.py
-------------
Error taxonomy for the POS engine and the JSON handlers that render it.

Services raise these; routes let them propagate (after rolling back the
session) and `register_error_handlers` turns them into responses:

    {"status": "fail", "code": "insufficient_stock", "message": ..., "details": {...}}
"""
from flask import jsonify
from werkzeug.exceptions import HTTPException


class PosError(Exception):
    """Base class for every error the engine reports to a caller."""
    status_code = 400
    code        = 'pos_error'

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            'status':  'fail',
            'code':    self.code,
            'message': self.message,
            'details': self.details,
        }


class ValidationError(PosError):
    """Client-detectable problem with the request (never reaches the store)."""
    status_code = 400
    code        = 'validation_error'


class NotFound(PosError):
    status_code = 404
    code        = 'not_found'


class InvalidPayment(PosError):
    """Amount tendered is below the sale total."""
    status_code = 402
    code        = 'invalid_payment'


class InsufficientStock(PosError):
    """A batch no longer holds the requested quantity at commit time."""
    status_code = 409
    code        = 'insufficient_stock'


class UndoNotAllowed(PosError):
    status_code = 409
    code        = 'undo_not_allowed'


class WindowExpired(UndoNotAllowed):
    status_code = 410
    code        = 'window_expired'


class WindowAlreadyUsed(UndoNotAllowed):
    status_code = 409
    code        = 'window_already_used'


class StoreError(PosError):
    """The backing store refused a write (constraint or integrity failure)."""
    status_code = 500
    code        = 'store_error'


class ChannelDisconnected(PosError):
    """
    Raised client-side when the notification stream cannot be (re)opened.
    Non-fatal: the channel retries up to its bound before surfacing it.
    """
    status_code = 503
    code        = 'channel_disconnected'


def register_error_handlers(app):
    """Render PosError and plain HTTP errors as JSON."""

    @app.errorhandler(PosError)
    def handle_pos_error(exc):
        if exc.status_code >= 500:
            app.logger.error(f"{exc.code}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({
            'status':  'fail' if exc.code < 500 else 'error',
            'code':    exc.name.lower().replace(' ', '_'),
            'message': exc.description,
            'details': {},
        }), exc.code

    @app.errorhandler(500)
    def internal_error(exc):
        app.logger.error(f"Unhandled server error: {exc}")
        return jsonify({
            'status':  'error',
            'code':    'internal_server_error',
            'message': 'Internal server error',
            'details': {},
        }), 500
