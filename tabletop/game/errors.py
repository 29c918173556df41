"""Domain errors raised by the game services.

Each carries the HTTP status the API layer reports for it; the services
themselves know nothing about HTTP beyond that number.
"""


class TurnError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TurnError):
    status_code = 404


class PermissionDeniedError(TurnError):
    status_code = 403


class NotYourTurnError(TurnError):
    status_code = 400

    def __init__(self, message: str = "Not your turn") -> None:
        super().__init__(message)


class InvalidRequestError(TurnError):
    status_code = 400
