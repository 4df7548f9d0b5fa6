"""Defines the core data structures and Pydantic models for loyaltynet.

This module contains the models for wallet identities and CA requests,
and the builders of the JSON payloads submitted to the loyalty contract.
Identity records are validated; contract payloads are passed through as
given.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Literal

from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from pydantic import BaseModel, ConfigDict, Field

from loyaltynet.errors import InvalidParameterError


class Credentials(BaseModel):
    """The certificate and private key of an X.509 identity.

    Attributes:
        certificate: The PEM-encoded X.509 certificate issued by the CA.
        privateKey: The PEM-encoded (PKCS#8) private key matching the
            certificate.
    """
    certificate: str
    privateKey: str


class X509Identity(BaseModel):
    """An identity record as stored in the wallet.

    The field names follow the wallet layout used by Fabric SDKs so that
    wallets can be shared with other Fabric applications.

    Attributes:
        credentials: The certificate and private key.
        mspId: The membership service provider id of the issuing organization
            (e.g., "Org1MSP").
        type: The identity type; only "X.509" is supported.
        version: The wallet record version.
    """
    credentials: Credentials
    mspId: str
    type: Literal["X.509"] = "X.509"
    version: int = 1

    def to_json(self, *, indent: int | None = None) -> str:
        """Serializes the identity to the wallet's JSON format."""
        return json.dumps(self.model_dump(mode="json"), indent=indent)

    @classmethod
    def from_json(cls, data: str | bytes) -> "X509Identity":
        """Deserializes an identity from the wallet's JSON format."""
        return cls.model_validate_json(data)


class Enrollment(BaseModel):
    """The material returned by a successful CA enrollment.

    Attributes:
        certificate: The PEM-encoded enrollment certificate.
        key: The private key generated for the certificate signing request.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    certificate: str
    key: EllipticCurvePrivateKey


class RegistrationRequest(BaseModel):
    """A request to register a new identity with the CA.

    Attributes:
        enrollmentID: The id under which the identity will be enrolled.
        affiliation: The affiliation configured in the CA
            (e.g., "org1.department1").
        role: The identity type, "client" for application users.
    """
    enrollmentID: str = Field(serialization_alias="id")
    affiliation: str
    role: str = Field(default="client", serialization_alias="type")

    def to_payload(self) -> Dict[str, Any]:
        """Returns the request body expected by the CA register endpoint."""
        return self.model_dump(by_alias=True)


# --- Contract payloads ---
# Values are passed through untouched; the contract validates them.

def member_payload(
    account_number: Any,
    first_name: Any,
    last_name: Any,
    email: Any,
    phone_number: Any,
) -> Dict[str, Any]:
    """Builds the CreateMember payload. New members start with zero points."""
    return {
        "accountNumber": account_number,
        "firstName": first_name,
        "lastName": last_name,
        "email": email,
        "phoneNumber": phone_number,
        "points": 0,
    }


def partner_payload(partner_id: Any, name: Any) -> Dict[str, Any]:
    """Builds the CreatePartner payload."""
    return {"id": partner_id, "name": name}


def points_payload(points: Any, account_number: Any, partner_id: Any) -> Dict[str, Any]:
    """Builds the payload shared by EarnPoints and UsePoints."""
    return {"points": points, "member": account_number, "partner": partner_id}


def to_argument(payload: Dict[str, Any]) -> str:
    """Serializes a payload into the JSON string argument passed to the contract.

    Raises:
        InvalidParameterError: If the payload holds a value JSON cannot encode.
    """
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError(f"Payload cannot be encoded as JSON: {e}") from e
