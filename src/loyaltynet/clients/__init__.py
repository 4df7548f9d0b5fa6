"""
loyaltynet Client Subpackage.

This package provides the client classes for reaching the loyalty network:
the certificate authority client, the ledger gateway, and the
LoyaltyNetwork facade exposing one method per business action.
"""

from .base_client import BaseClient
from .ca_client import CAClient
from .gateway import Contract, Gateway, GatewayClient, Network
from .loyalty_network import LoyaltyNetwork
from loyaltynet.errors import (
    LoyaltyNetError,
    InvalidParameterError,
    ConfigurationError,
    NetworkError,
    IdentityError,
    IdentityExistsError,
    IdentityNotFound,
    EnrollmentError,
    RegistrationError,
    ContractError,
    TransactionError,
    InvalidResponseError,
    ErrorKind,
    OperationError,
)

__all__ = [
    "BaseClient",
    "CAClient",
    "Contract",
    "Gateway",
    "GatewayClient",
    "Network",
    "LoyaltyNetwork",
    "LoyaltyNetError",
    "InvalidParameterError",
    "ConfigurationError",
    "NetworkError",
    "IdentityError",
    "IdentityExistsError",
    "IdentityNotFound",
    "EnrollmentError",
    "RegistrationError",
    "ContractError",
    "TransactionError",
    "InvalidResponseError",
    "ErrorKind",
    "OperationError",
]
