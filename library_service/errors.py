"""
Error taxonomy shared by the services and the request handlers.

Services raise these; ``app.py`` turns them into redirects, flashed
messages or JSON bodies at the request boundary.
"""


class LibraryError(Exception):
    status_code = 400
    message = "Request could not be completed"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidInput(LibraryError):
    status_code = 400
    message = "Invalid input"


class NotAuthenticated(LibraryError):
    status_code = 401
    message = "Please log in first"


class BadPassword(LibraryError):
    status_code = 401
    message = "Incorrect password"


class NotFound(LibraryError):
    status_code = 404
    message = "Not found"


class UserNotFound(NotFound):
    message = "User not found"


class Conflict(LibraryError):
    status_code = 409
    message = "Conflict"


class StoreUnavailable(LibraryError):
    status_code = 503
    message = "The library is temporarily unavailable, please try again later"
