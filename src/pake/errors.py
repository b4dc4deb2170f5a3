STATUS_OK = 0x00


class AuthError(Exception):
    """Base class for every failure reported by the authentication core."""

    status: int = 0xFF
    default_message: str = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidCredentials(AuthError):
    # unknown users and wrong passwords both map here
    status = 0x01
    default_message = "Invalid credentials"


class UserAlreadyRegistered(AuthError):
    status = 0x02
    default_message = "User already registered"


class ProtocolViolation(AuthError):
    status = 0x03
    default_message = "Protocol violation"


class SessionExpired(AuthError):
    status = 0x04
    default_message = "Session expired"


class StorageError(AuthError):
    status = 0x05
    default_message = "Credential store failure"


class TransportError(AuthError):
    status = 0x06
    default_message = "Transport failure"


_BY_STATUS: dict[int, type[AuthError]] = {
    cls.status: cls
    for cls in (
        InvalidCredentials,
        UserAlreadyRegistered,
        ProtocolViolation,
        SessionExpired,
        StorageError,
        TransportError,
    )
}


def error_for_status(status: int) -> AuthError:
    """Rebuild the error a peer reported through an AuthResult status byte."""
    cls = _BY_STATUS.get(status)
    if cls is None:
        return ProtocolViolation(f"Unknown result status {status:#04x}")
    return cls()
