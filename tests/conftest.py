# tests/conftest.py
import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from loyaltynet.config import AppConfig, ConnectionProfile, DiscoveryOptions
from loyaltynet.types import Credentials, X509Identity
from loyaltynet.utils import crypto


def make_certificate(common_name, key, public_key=None):
    """PEM certificate for common_name signed by key; self-signed unless public_key is given."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(public_key or key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.PEM).decode("ascii")


def make_identity(common_name, msp_id="Org1MSP"):
    key = crypto.generate_private_key()
    return X509Identity(
        credentials=Credentials(
            certificate=make_certificate(common_name, key),
            privateKey=crypto.private_key_to_pem(key),
        ),
        mspId=msp_id,
    )


# --- Fixtures ---------------------------------------------------------------

@pytest.fixture
def admin_identity():
    return make_identity("admin")


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        connection_file="connection.json",
        gateway_discovery=DiscoveryOptions(enabled=True, as_localhost=True),
        base_dir=tmp_path,
    )


@pytest.fixture
def profile():
    return ConnectionProfile.model_validate({
        "client": {"organization": "Org1"},
        "organizations": {"Org1": {"mspid": "Org1MSP", "peers": ["peer0.org1.example.com"]}},
        "peers": {
            "peer0.org1.example.com": {"url": "grpcs://peer0.org1.example.com:7051",
                                       "gatewayUrl": "http://peer0.org1.example.com:7443"},
            "peer1.org1.example.com": {"url": "http://peer1.org1.example.com:8443"},
        },
        "certificateAuthorities": {
            "ca.org1.example.com": {"url": "http://ca.org1.example.com:7054", "caName": "ca-org1"},
        },
        "channels": {"meete-channel": {"peers": {"peer1.org1.example.com": {}}}},
    })


@pytest.fixture
def certificate_factory():
    return make_certificate


@pytest.fixture
def identity_factory():
    return make_identity
