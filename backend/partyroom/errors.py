"""Error taxonomy shared by the store, the services and the HTTP layer."""

from typing import Any, Optional

from flask import jsonify


class RoomError(Exception):
    code = 'room_error'
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details if details is not None else {}


class NotFound(RoomError):
    """Room, player, game or join code does not resolve."""
    code = 'not_found'
    status_code = 404


class InvalidInput(RoomError):
    """Guess out of the current range, non-numeric, or a malformed field."""
    code = 'invalid_input'
    status_code = 400


class InvalidState(RoomError):
    """Action attempted in the wrong room status or by the wrong player."""
    code = 'invalid_state'
    status_code = 409


class StoreUnavailable(RoomError):
    """Underlying store call failed for transport reasons."""
    code = 'store_unavailable'
    status_code = 503


def build_error_payload(*, code: str, message: str, details: Any = None) -> dict:
    payload = {
        'code': str(code).strip() or 'unknown_error',
        'message': str(message).strip() or 'Unknown error.',
        'details': details if details is not None else {},
    }
    # Older clients read "error"
    payload['error'] = payload['message']
    return payload


def error_response(exc: RoomError):
    if exc.status_code >= 500:
        message = 'The room service is temporarily unavailable. Please try again.'
    else:
        message = exc.message
    return jsonify(build_error_payload(code=exc.code, message=message, details=exc.details)), exc.status_code
