import asyncio
import json

import pytest

from loyaltynet.clients.loyalty_network import LoyaltyNetwork
from loyaltynet.errors import (
    EnrollmentError,
    ErrorKind,
    IdentityNotFound,
    NetworkError,
    OperationError,
    TransactionError,
)
from loyaltynet.types import Enrollment
from loyaltynet.utils import crypto
from loyaltynet.wallet import InMemoryWallet


# --- Fakes ------------------------------------------------------------------

class FakeContract:
    def __init__(self, responses, calls):
        self._responses = responses
        self.calls = calls

    async def _invoke(self, kind, name, args):
        self.calls.append((kind, name, args))
        response = self._responses.get(name, b"{}")
        if isinstance(response, Exception):
            raise response
        return response

    async def submit_transaction(self, name, *args):
        return await self._invoke("submit", name, args)

    async def evaluate_transaction(self, name, *args):
        return await self._invoke("evaluate", name, args)


class FakeNetwork:
    def __init__(self, contract, names):
        self._contract = contract
        self._names = names

    def get_contract(self, name):
        self._names.append(name)
        return self._contract


class FakeGateway:
    """Records connection lifecycle events in a shared log."""

    def __init__(self, harness):
        self.h = harness

    async def connect(self, profile, *, wallet, identity, discovery):
        self.h.events.append("connect")
        self.h.identity_present_at_connect = await wallet.get(identity) is not None
        self.h.connect_args = (identity, discovery)
        if self.h.connect_error:
            raise self.h.connect_error

    async def get_network(self, channel):
        self.h.channels.append(channel)
        if self.h.network_error:
            raise self.h.network_error
        return FakeNetwork(FakeContract(self.h.responses, self.h.calls), self.h.contracts)

    async def disconnect(self):
        self.h.events.append("disconnect")


class FakeCAClient:
    def __init__(self, harness):
        self.h = harness

    async def register(self, request, registrar):
        self.h.registrations.append((request, registrar))
        if self.h.register_error:
            raise self.h.register_error
        await asyncio.sleep(0)
        return "secret-" + request.enrollmentID

    async def enroll(self, enrollment_id, secret):
        self.h.enrollments.append((enrollment_id, secret))
        key = crypto.generate_private_key()
        return Enrollment(certificate=self.h.certificate_factory(enrollment_id, key), key=key)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.h.ca_closed += 1


class Harness:
    def __init__(self, certificate_factory):
        self.certificate_factory = certificate_factory
        self.events = []
        self.calls = []
        self.channels = []
        self.contracts = []
        self.registrations = []
        self.enrollments = []
        self.responses = {}
        self.ca_closed = 0
        self.connect_error = None
        self.network_error = None
        self.register_error = None
        self.identity_present_at_connect = None
        self.connect_args = None


@pytest.fixture
def harness(certificate_factory):
    return Harness(certificate_factory)


@pytest.fixture
async def wallet(admin_identity):
    w = InMemoryWallet()
    await w.put("admin", admin_identity)
    return w


@pytest.fixture
def network(app_config, profile, wallet, harness):
    return LoyaltyNetwork(
        app_config,
        profile,
        wallet,
        ca_client_factory=lambda: FakeCAClient(harness),
        gateway_factory=lambda: FakeGateway(harness),
    )


# --- register_member --------------------------------------------------------

async def test_register_member_registers_identity_and_creates_member(network, harness, wallet, admin_identity):
    harness.responses = {
        "CreateMember": b'{"accountNumber":"ACC1"}',
        "GetState": b'{"accountNumber":"ACC1","points":0}',
    }

    result = await network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100")

    assert result is True
    request, registrar = harness.registrations[0]
    assert request.enrollmentID == "card1"
    assert request.affiliation == "org1.department1"
    assert request.role == "client"
    assert registrar == admin_identity
    assert harness.enrollments == [("card1", "secret-card1")]

    stored = await wallet.get("card1")
    assert stored.mspId == "Org1MSP"
    assert crypto.certificate_common_name(stored.credentials.certificate) == "card1"
    assert harness.identity_present_at_connect is True

    kind, name, args = harness.calls[0]
    assert (kind, name) == ("submit", "CreateMember")
    assert json.loads(args[0]) == {
        "accountNumber": "ACC1", "firstName": "Jane", "lastName": "Doe",
        "email": "jane@x.com", "phoneNumber": "555-0100", "points": 0,
    }
    assert harness.calls[1] == ("evaluate", "GetState", ("ACC1",))
    assert harness.events == ["connect", "disconnect"]
    assert harness.channels == ["meete-channel"]
    assert harness.contracts == ["loyalty"]


async def test_register_member_existing_identity_short_circuits(network, harness, wallet, identity_factory):
    await wallet.put("card1", identity_factory("card1"))

    result = await network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100")

    assert result == {"error": "An identity for the user card1 already exists in the wallet"}
    assert result.kind is ErrorKind.IDENTITY_EXISTS
    assert harness.registrations == []
    assert harness.events == []


async def test_register_member_without_admin(app_config, profile, harness):
    network = LoyaltyNetwork(app_config, profile, InMemoryWallet(),
                             ca_client_factory=lambda: FakeCAClient(harness),
                             gateway_factory=lambda: FakeGateway(harness))

    result = await network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100")

    assert "admin" in result["error"]
    assert result.kind is ErrorKind.IDENTITY_NOT_FOUND
    assert harness.registrations == []
    assert harness.events == []


async def test_register_member_enrollment_failure_aborts_before_ledger(network, harness, wallet):
    harness.register_error = EnrollmentError("Authorization failure")

    result = await network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100")

    assert result == {"error": "Authorization failure"}
    assert result.kind is ErrorKind.ENROLLMENT_FAILED
    assert await wallet.get("card1") is None
    assert harness.events == []


async def test_register_member_passes_values_through_unchanged(network, harness):
    result = await network.register_member("card9", "ACC9", "Jane", "Doe", "j@x.com", 5550100)

    assert result is True
    kind, name, args = harness.calls[0]
    assert (kind, name) == ("submit", "CreateMember")
    member = json.loads(args[0])
    assert member["phoneNumber"] == 5550100
    assert list(member) == ["accountNumber", "firstName", "lastName", "email", "phoneNumber", "points"]


async def test_unencodable_payload_fails_before_registration(network, harness, wallet):
    result = await network.register_member("card9", "ACC9", "Jane", "Doe", "j@x.com", object())

    assert isinstance(result, OperationError)
    assert "JSON" in result["error"]
    assert harness.registrations == []
    assert await wallet.get("card9") is None
    assert harness.events == []

    # The card id is still free for a corrected retry.
    retry = await network.register_member("card9", "ACC9", "Jane", "Doe", "j@x.com", "555-0100")
    assert retry is True


async def test_concurrent_registrations_register_once(network, harness):
    results = await asyncio.gather(
        network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100"),
        network.register_member("card1", "ACC1", "Jane", "Doe", "jane@x.com", "555-0100"),
    )

    assert len(harness.registrations) == 1
    assert True in results
    failures = [r for r in results if isinstance(r, OperationError)]
    assert len(failures) == 1 and failures[0].kind is ErrorKind.IDENTITY_EXISTS


# --- register_partner -------------------------------------------------------

async def test_register_partner(network, harness, wallet):
    result = await network.register_partner("partner-card", "PARTNER1", "Coffee Shop")

    assert result is True
    assert json.loads(harness.calls[0][2][0]) == {"id": "PARTNER1", "name": "Coffee Shop"}
    assert harness.calls[0][:2] == ("submit", "CreatePartner")
    assert harness.calls[1] == ("evaluate", "GetState", ("PARTNER1",))
    assert await wallet.get("partner-card") is not None


# --- points transactions ----------------------------------------------------

async def test_earn_points_transaction(network, harness, wallet, identity_factory):
    await wallet.put("card1", identity_factory("card1"))
    harness.responses = {"EarnPoints": b'{"points":50}'}

    result = await network.earn_points_transaction("card1", "ACC1", "PARTNER1", 50)

    assert result is True
    kind, name, args = harness.calls[0]
    assert (kind, name) == ("submit", "EarnPoints")
    assert json.loads(args[0]) == {"points": 50, "member": "ACC1", "partner": "PARTNER1"}
    assert harness.registrations == []
    assert harness.events == ["connect", "disconnect"]


@pytest.mark.parametrize("method, transaction", [
    ("earn_points_transaction", "EarnPoints"),
    ("use_points_transaction", "UsePoints"),
])
async def test_points_are_not_coerced(network, harness, wallet, identity_factory, method, transaction):
    await wallet.put("card1", identity_factory("card1"))

    result = await getattr(network, method)("card1", "ACC1", "PARTNER1", 12.5)

    assert result is True
    kind, name, args = harness.calls[0]
    assert (kind, name) == ("submit", transaction)
    assert json.loads(args[0]) == {"points": 12.5, "member": "ACC1", "partner": "PARTNER1"}


async def test_use_points_rejected_by_contract(network, harness, wallet, identity_factory):
    await wallet.put("card1", identity_factory("card1"))
    harness.responses = {"UsePoints": TransactionError("Insufficient points")}

    result = await network.use_points_transaction("card1", "ACC1", "PARTNER1", 500)

    assert result == {"error": "Insufficient points"}
    assert result.kind is ErrorKind.TRANSACTION_REJECTED
    assert harness.calls[0][:2] == ("submit", "UsePoints")
    assert harness.events == ["connect", "disconnect"]


# --- queries ----------------------------------------------------------------

async def test_member_data_returns_decoded_state(network, harness):
    harness.responses = {"GetState": b'{"accountNumber":"ACC1","points":50}'}

    result = await network.member_data("card1", "ACC1")

    assert result == {"accountNumber": "ACC1", "points": 50}
    assert harness.calls == [("evaluate", "GetState", ("ACC1",))]


async def test_member_data_network_error(network, harness):
    harness.responses = {"GetState": NetworkError("connect ECONNREFUSED 127.0.0.1:7051")}

    result = await network.member_data("card1", "ACC1")

    assert result == {"error": "connect ECONNREFUSED 127.0.0.1:7051"}
    assert result.kind is ErrorKind.LEDGER_UNAVAILABLE
    assert harness.events == ["connect", "disconnect"]


async def test_partner_data(network, harness):
    harness.responses = {"GetState": b'{"id":"PARTNER1","name":"Coffee Shop"}'}
    assert await network.partner_data("card1", "PARTNER1") == {"id": "PARTNER1", "name": "Coffee Shop"}


async def test_all_partners_info(network, harness):
    harness.responses = {"GetState": b'[{"id":"P1"},{"id":"P2"}]'}

    result = await network.all_partners_info("card1")

    assert result == [{"id": "P1"}, {"id": "P2"}]
    assert harness.calls == [("evaluate", "GetState", ("all-partners",))]


@pytest.mark.parametrize("method, transaction", [
    ("earn_points_transactions_info", "EarnPointsTransactionsInfo"),
    ("use_points_transactions_info", "UsePointsTransactionsInfo"),
])
async def test_transactions_info(network, harness, method, transaction):
    harness.responses = {transaction: b'[{"points":10}]'}

    result = await getattr(network, method)("card1", "member", "ACC1")

    assert result == [{"points": 10}]
    assert harness.calls == [("evaluate", transaction, ("member", "ACC1"))]


async def test_non_json_response_is_an_error(network, harness):
    harness.responses = {"GetState": b"not json"}

    result = await network.member_data("card1", "ACC1")

    assert result.kind is ErrorKind.INVALID_RESPONSE
    assert "GetState" in result["error"]


# --- connection failures ----------------------------------------------------

@pytest.mark.parametrize("stage", ["connect", "network"])
async def test_connection_failures_become_error_results(network, harness, stage):
    error = IdentityNotFound("Identity not found in wallet: card1")
    if stage == "connect":
        harness.connect_error = error
    else:
        harness.network_error = error

    result = await network.member_data("card1", "ACC1")

    assert result == {"error": "Identity not found in wallet: card1"}
    assert harness.calls == []
    assert harness.events == ["connect", "disconnect"]


async def test_connect_uses_configured_discovery(network, harness, app_config):
    await network.all_partners_info("card1")
    assert harness.connect_args == ("card1", app_config.gateway_discovery)


def test_camel_case_aliases():
    assert LoyaltyNetwork.registerMember is LoyaltyNetwork.register_member
    assert LoyaltyNetwork.usePointsTransactionsInfo is LoyaltyNetwork.use_points_transactions_info
