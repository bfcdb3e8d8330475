from __future__ import annotations


class RelayError(RuntimeError):
    code = "relay_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(RelayError):
    code = "invalid_request"
    status_code = 400


class InvalidSession(RelayError):
    code = "invalid_session"
    status_code = 400

    def __init__(self, message: str = "Invalid or expired session.") -> None:
        super().__init__(message)


class NotFound(RelayError):
    code = "not_found"
    status_code = 404

    def __init__(self, message: str = "Session not found or expired.") -> None:
        super().__init__(message)


class SessionNotFound(NotFound):
    code = "session_not_found"

    def __init__(self, message: str = "Session not found.") -> None:
        super().__init__(message)


class UpstreamExchangeFailed(RelayError):
    code = "upstream_exchange_failed"
    status_code = 500


class UpstreamProfileFailed(RelayError):
    code = "upstream_profile_failed"
    status_code = 500
