from typing import Any, Dict


class ChatError(Exception):

    status_code = 400
    code = "chat_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class ValidationError(ChatError):
    """Malformed identifiers or missing fields. Nothing was mutated."""

    status_code = 422
    code = "validation_error"


class AuthorizationError(ChatError):
    """Caller is not a participant of the message or conversation."""

    status_code = 403
    code = "forbidden"


class NotFoundError(ChatError):

    status_code = 404
    code = "not_found"


class PersistenceError(ChatError):
    """A store write did not commit; no notification was emitted for it."""

    status_code = 503
    code = "persistence_error"
