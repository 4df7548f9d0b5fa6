from __future__ import annotations

from enum import Enum


class LoyaltyNetError(Exception):
    """Root of every error raised by the loyalty network client."""
    pass


class InvalidParameterError(LoyaltyNetError):
    """
    Raised when a caller passes an argument the client cannot use, e.g. an
    empty enrollment secret or a payload that cannot be encoded as JSON.
    """
    pass


class ConfigurationError(LoyaltyNetError):
    """
    Raised when the application config or the connection profile cannot be
    read or lacks an entry the client needs.
    """
    pass


class NetworkError(LoyaltyNetError):
    """Raised when the CA or a gateway peer cannot be reached or times out."""
    pass


class IdentityError(LoyaltyNetError):
    """Base class for wallet and CA enrollment failures."""
    pass


class IdentityExistsError(IdentityError):
    """Raised when an identity is already stored under the requested label."""
    pass


class IdentityNotFound(IdentityError):
    """Raised when a required identity is missing from the wallet."""
    pass


class EnrollmentError(IdentityError):
    """
    Raised when the certificate authority refuses or fails an enrollment.

    Attributes:
        errors: The error entries reported by the CA, if any.
    """

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class RegistrationError(EnrollmentError):
    """Raised when the certificate authority refuses to register an identity."""
    pass


class ContractError(LoyaltyNetError):
    """Raised when a loyalty contract call fails after reaching a peer."""
    pass


class TransactionError(ContractError):
    """
    Raised when a peer answers a proposal with an error status, e.g. an
    endorsement failure or a contract-side rejection such as insufficient
    points.

    Attributes:
        transaction_id: Id of the rejected proposal, for matching against
                        peer logs.
    """

    def __init__(self, message: str, transaction_id: str | None = None):
        super().__init__(message)
        self.transaction_id = transaction_id


class InvalidResponseError(ContractError):
    """Raised when a transaction response cannot be decoded as JSON."""
    pass


class ErrorKind(str, Enum):
    """Failure categories reported by the network facade."""

    IDENTITY_EXISTS = "identity_exists"
    IDENTITY_NOT_FOUND = "identity_not_found"
    ENROLLMENT_FAILED = "enrollment_failed"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    TRANSACTION_REJECTED = "transaction_rejected"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


def error_kind(exc: BaseException) -> ErrorKind:
    """Map an exception to the ErrorKind reported to callers."""
    if isinstance(exc, IdentityExistsError):
        return ErrorKind.IDENTITY_EXISTS
    if isinstance(exc, IdentityNotFound):
        return ErrorKind.IDENTITY_NOT_FOUND
    if isinstance(exc, EnrollmentError):
        return ErrorKind.ENROLLMENT_FAILED
    if isinstance(exc, NetworkError):
        return ErrorKind.LEDGER_UNAVAILABLE
    if isinstance(exc, InvalidResponseError):
        return ErrorKind.INVALID_RESPONSE
    if isinstance(exc, ContractError):
        return ErrorKind.TRANSACTION_REJECTED
    return ErrorKind.UNKNOWN


class OperationError(dict):
    """
    Failure result returned by the network facade.

    Compares equal to ``{"error": message}`` so callers that only look at the
    ``error`` field keep working, and carries the failure ``kind``.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(error=message)
        self.kind = kind

    @property
    def message(self) -> str:
        return self["error"]

    @classmethod
    def from_exception(cls, exc: BaseException) -> "OperationError":
        return cls(str(exc), error_kind(exc))

    def __repr__(self) -> str:
        return f"OperationError(kind={self.kind.value!r}, error={self.message!r})"
