"""Provides cryptographic helper functions for identity and request signing.

This module contains self-contained, pure functions for handling the key
material of X.509 identities: key generation, certificate signing requests,
ECDSA signing in the form accepted by Fabric peers and CAs, and the
authorization tokens used by the CA REST API.

Supported Suites:
  - ECDSA over NIST P-256 with SHA-256, signatures DER-encoded with low-S.

Dependencies:
  - cryptography: For all key, CSR, signature and certificate operations.
"""
from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Tuple, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_pem_private_key,
)
from cryptography.x509.oid import NameOID

# --- Constants ---

# Order of the P-256 base point; signatures with s > n/2 are rejected by Fabric.
_P256_ORDER: int = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
_P256_HALF_ORDER: int = _P256_ORDER >> 1

_NONCE_SIZE: int = 24


def _b64(data: Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("ascii")

# --- Keys ---

def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generates an ECDSA P-256 private key."""
    return ec.generate_private_key(ec.SECP256R1())


def private_key_to_pem(key: ec.EllipticCurvePrivateKey) -> str:
    """Serializes a private key to an unencrypted PKCS#8 PEM string."""
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("ascii")


def load_private_key(pem: Union[str, bytes]) -> ec.EllipticCurvePrivateKey:
    """Loads an ECDSA private key from PEM.

    Raises:
        ValueError: If the PEM is malformed or not an elliptic curve key.
    """
    if isinstance(pem, str):
        pem = pem.encode("ascii")
    key = load_pem_private_key(pem, password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValueError("Only ECDSA private keys are supported")
    return key

# --- Certificates ---

def create_csr(common_name: str, key: ec.EllipticCurvePrivateKey) -> str:
    """Builds a PEM certificate signing request for an enrollment.

    Args:
        common_name: The enrollment id; the CA requires CN to match it.
        key: The private key the certificate will be issued for.

    Returns:
        The PEM-encoded CSR.
    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(Encoding.PEM).decode("ascii")


def load_certificate(pem: Union[str, bytes]) -> x509.Certificate:
    if isinstance(pem, str):
        pem = pem.encode("ascii")
    return x509.load_pem_x509_certificate(pem)


def certificate_common_name(pem: Union[str, bytes]) -> str:
    """Returns the subject common name of a PEM certificate."""
    attrs = load_certificate(pem).subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        raise ValueError("Certificate has no common name")
    return str(attrs[0].value)

# --- Signatures ---

def sign(key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
    """Signs data with ECDSA-SHA256 and returns a low-S DER signature."""
    der = key.sign(data, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    if s > _P256_HALF_ORDER:
        s = _P256_ORDER - s
    return encode_dss_signature(r, s)


def verify(certificate_pem: Union[str, bytes], signature: bytes, data: bytes) -> bool:
    """Verifies an ECDSA-SHA256 signature against a certificate's public key.

    Returns:
        True if the signature is valid, False otherwise.
    """
    public_key = load_certificate(certificate_pem).public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False
    try:
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


def create_ca_token(
    certificate_pem: str,
    key: ec.EllipticCurvePrivateKey,
    method: str,
    uri: str,
    body: bytes,
) -> str:
    """Builds the authorization token expected by the CA REST API.

    The token is ``b64(cert) + "." + b64(sig)`` where the signature covers
    ``method.b64(uri).b64(body).b64(cert)``.

    Args:
        certificate_pem: The registrar's certificate.
        key: The registrar's private key.
        method: The HTTP method, e.g. "POST".
        uri: The request path, e.g. "/api/v1/register".
        body: The exact request body bytes.

    Returns:
        The token to send in the Authorization header.
    """
    b64_cert = _b64(certificate_pem)
    payload = ".".join([method.upper(), _b64(uri), _b64(body), b64_cert])
    signature = sign(key, payload.encode("utf-8"))
    return f"{b64_cert}.{_b64(signature)}"


def new_transaction_id(creator: bytes) -> Tuple[bytes, str]:
    """Generates a nonce and the transaction id derived from it.

    Args:
        creator: The serialized identity of the submitter.

    Returns:
        A tuple of (nonce, transaction_id), where the id is the hex SHA-256
        of nonce followed by creator.
    """
    nonce = secrets.token_bytes(_NONCE_SIZE)
    return nonce, hashlib.sha256(nonce + creator).hexdigest()
