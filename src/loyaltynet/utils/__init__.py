"""Initializes the loyaltynet utilities sub-package.

Available Utilities:
  - crypto: ECDSA key generation, CSRs, low-S signing, CA authorization
    tokens and transaction ids.
  - logging: structlog setup and logger access.
"""
from .crypto import (
    generate_private_key,
    private_key_to_pem,
    load_private_key,
    create_csr,
    certificate_common_name,
    sign,
    verify,
    create_ca_token,
    new_transaction_id,
)
from .logging import get_logger, setup_logging

__all__ = [
    # from .crypto
    "generate_private_key",
    "private_key_to_pem",
    "load_private_key",
    "create_csr",
    "certificate_common_name",
    "sign",
    "verify",
    "create_ca_token",
    "new_transaction_id",

    # from .logging
    "get_logger",
    "setup_logging",
]
