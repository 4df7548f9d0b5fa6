from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional, Union

import httpx

from loyaltynet.clients.base_client import BaseClient
from loyaltynet.config import ConnectionProfile
from loyaltynet.errors import EnrollmentError, InvalidParameterError, RegistrationError
from loyaltynet.types import Enrollment, RegistrationRequest, X509Identity
from loyaltynet.utils import crypto
from loyaltynet.utils.logging import get_logger

logger = get_logger(__name__)

_ENROLL_PATH = "/api/v1/enroll"
_REGISTER_PATH = "/api/v1/register"


def _ca_messages(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    errors = body.get("errors") or []
    return [e for e in errors if isinstance(e, dict)]


def _describe(errors: List[Dict[str, Any]], fallback: str) -> str:
    if not errors:
        return fallback
    return "; ".join(f"{e.get('code', '')}: {e.get('message', '')}".strip(": ") for e in errors)


class CAClient(BaseClient):
    """Client for the certificate authority's REST API: enrollment and registration."""

    def __init__(
        self,
        url: str,
        ca_name: Optional[str] = None,
        trusted_roots: Optional[Union[str, List[str]]] = None,
        verify: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize a CAClient.

        Args:
            url: Base URL of the CA, e.g. "https://localhost:7054".
            ca_name: Name of the CA instance on the server; None selects the
                     server's default CA.
            trusted_roots: PEM TLS root certificate(s) of the CA.
            verify: Whether to verify the CA's TLS certificate.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport.
        """
        super().__init__(
            base_url=url,
            trusted_roots=trusted_roots,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )
        self._ca_name = ca_name

    @classmethod
    def from_profile(
        cls,
        profile: ConnectionProfile,
        name: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CAClient":
        """
        Build a CAClient from the connection profile entry of a CA.

        Raises:
            ConfigurationError: If the profile does not declare the CA.
        """
        info = profile.certificate_authority(name)
        tls = info.get("tlsCACerts") or {}
        http_options = info.get("httpOptions") or {}
        return cls(
            info.get("url", ""),
            ca_name=info.get("caName"),
            trusted_roots=tls.get("pem"),
            verify=http_options.get("verify", True),
            transport=transport,
        )

    @property
    def ca_name(self) -> Optional[str]:
        return self._ca_name

    def _with_ca_name(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._ca_name:
            payload["caname"] = self._ca_name
        return payload

    async def _call(self, path: str, payload: Dict[str, Any], error_cls: type, **kwargs: Any) -> Dict[str, Any]:
        """
        POST a JSON payload and return the ``result`` object of a successful response.

        Raises:
            NetworkError: The CA could not be reached.
            EnrollmentError / RegistrationError: The CA rejected the request.
        """
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json", **kwargs.pop("headers", {})}
        resp = await self._post(path, content=body, headers=headers, **kwargs)

        try:
            data = resp.json()
        except ValueError:
            raise error_cls(f"CA returned HTTP {resp.status_code} with a non-JSON body") from None

        errors = _ca_messages(data) if isinstance(data, dict) else []
        if resp.is_error or not isinstance(data, dict) or not data.get("success"):
            raise error_cls(_describe(errors, f"CA request failed with HTTP {resp.status_code}"), errors)
        return data.get("result") or {}

    async def enroll(self, enrollment_id: str, secret: str) -> Enrollment:
        """
        Enroll an identity: generate a key, send a CSR and receive its certificate.

        Args:
            enrollment_id: The registered enrollment id.
            secret: The enrollment secret.

        Returns:
            The Enrollment holding the certificate and the new private key.

        Raises:
            InvalidParameterError: If the id or secret is empty.
            NetworkError: The CA could not be reached.
            EnrollmentError: The CA rejected the enrollment.
        """
        if not enrollment_id or not secret:
            raise InvalidParameterError("enrollment_id and secret must be provided")

        key = crypto.generate_private_key()
        csr = crypto.create_csr(enrollment_id, key)
        result = await self._call(
            _ENROLL_PATH,
            self._with_ca_name({"certificate_request": csr}),
            EnrollmentError,
            auth=(enrollment_id, secret),
        )

        try:
            certificate = base64.b64decode(result["Cert"]).decode("utf-8")
        except (KeyError, ValueError) as e:
            raise EnrollmentError(f"CA response carries no usable certificate: {e}") from e

        logger.info("ca_enrollment_succeeded", enrollment_id=enrollment_id, ca=self._ca_name)
        return Enrollment(certificate=certificate, key=key)

    async def register(self, request: RegistrationRequest, registrar: X509Identity) -> str:
        """
        Register a new identity, authorized by a registrar identity.

        Args:
            request: The registration request.
            registrar: An identity allowed to register others (the admin).

        Returns:
            The enrollment secret for the new identity.

        Raises:
            NetworkError: The CA could not be reached.
            RegistrationError: The CA rejected the registration.
        """
        payload = self._with_ca_name(request.to_payload())
        body = json.dumps(payload).encode("utf-8")
        key = crypto.load_private_key(registrar.credentials.privateKey)
        token = crypto.create_ca_token(registrar.credentials.certificate, key, "POST", _REGISTER_PATH, body)

        result = await self._call(
            _REGISTER_PATH,
            payload,
            RegistrationError,
            headers={"Authorization": token},
        )
        secret = result.get("secret")
        if not secret:
            raise RegistrationError("CA response carries no enrollment secret")

        logger.info("ca_registration_succeeded", enrollment_id=request.enrollmentID, ca=self._ca_name)
        return secret
