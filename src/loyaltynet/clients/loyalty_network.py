from __future__ import annotations

import asyncio
import json
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from loyaltynet.clients.ca_client import CAClient
from loyaltynet.clients.gateway import Contract, Gateway
from loyaltynet.config import AppConfig, ConnectionProfile
from loyaltynet.errors import (
    IdentityExistsError,
    IdentityNotFound,
    InvalidResponseError,
    OperationError,
)
from loyaltynet.types import (
    Credentials,
    RegistrationRequest,
    X509Identity,
    member_payload,
    partner_payload,
    points_payload,
    to_argument,
)
from loyaltynet.utils import crypto
from loyaltynet.utils.logging import get_logger
from loyaltynet.wallet import Wallet

logger = get_logger(__name__)

ALL_PARTNERS_KEY = "all-partners"


def _decode(response: bytes, transaction: str) -> Any:
    """Parse a transaction response as UTF-8 JSON."""
    try:
        return json.loads(response.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidResponseError(f"{transaction} returned a non-JSON response: {e}") from e


class LoyaltyNetwork:
    """
    Facade over the loyalty contract: one method per business action.

    Every method opens its own gateway connection for the caller identity,
    invokes the transaction(s), and disconnects before returning. Failures
    are never raised; they come back as an OperationError equal to
    ``{"error": message}``.
    """

    def __init__(
        self,
        config: AppConfig,
        profile: ConnectionProfile,
        wallet: Wallet,
        *,
        ca_client_factory: Optional[Callable[[], CAClient]] = None,
        gateway_factory: Optional[Callable[[], Gateway]] = None,
    ) -> None:
        """
        Initialize the facade.

        Args:
            config: Application config (admin id, MSP id, channel, contract,
                    discovery policy).
            profile: Network connection profile.
            wallet: Identity store shared by all operations.
            ca_client_factory: Builds the CA client used for registrations;
                               defaults to the profile's configured CA.
            gateway_factory: Builds a Gateway per operation.
        """
        self._config = config
        self._profile = profile
        self._wallet = wallet
        self._ca_client_factory = ca_client_factory or (lambda: CAClient.from_profile(profile, config.ca_name))
        self._gateway_factory = gateway_factory or Gateway
        # One lock per card id, alive while some registration holds or awaits it.
        self._registration_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # --- identity ---------------------------------------------------------

    def _lock_for(self, card_id: str) -> asyncio.Lock:
        lock = self._registration_locks.get(card_id)
        if lock is None:
            lock = asyncio.Lock()
            self._registration_locks[card_id] = lock
        return lock

    async def _register_identity(self, card_id: str) -> None:
        """
        Register and enroll card_id with the CA and store it in the wallet.

        Raises:
            IdentityExistsError: card_id is already in the wallet.
            IdentityNotFound: The admin identity has not been enrolled.
            EnrollmentError / NetworkError: The CA refused or was unreachable.
        """
        async with self._lock_for(card_id):
            if await self._wallet.get(card_id) is not None:
                raise IdentityExistsError(f"An identity for the user {card_id} already exists in the wallet")

            admin = await self._wallet.get(self._config.app_admin)
            if admin is None:
                raise IdentityNotFound(
                    f"An identity for the admin user {self._config.app_admin} does not exist in the wallet. "
                    "Run the admin enrollment before retrying"
                )

            request = RegistrationRequest(
                enrollmentID=card_id,
                affiliation=self._config.affiliation,
                role="client",
            )
            async with self._ca_client_factory() as ca:
                secret = await ca.register(request, admin)
                enrollment = await ca.enroll(card_id, secret)

            identity = X509Identity(
                credentials=Credentials(
                    certificate=enrollment.certificate,
                    privateKey=crypto.private_key_to_pem(enrollment.key),
                ),
                mspId=self._config.org_msp_id,
            )
            await self._wallet.put(card_id, identity, exclusive=True)
            logger.info("identity_registered", card_id=card_id)

    # --- connection -------------------------------------------------------

    @asynccontextmanager
    async def _contract(self, card_id: str) -> AsyncIterator[Contract]:
        gateway = self._gateway_factory()
        try:
            await gateway.connect(
                self._profile,
                wallet=self._wallet,
                identity=card_id,
                discovery=self._config.gateway_discovery,
            )
            network = await gateway.get_network(self._config.channel_name)
            yield network.get_contract(self._config.contract_name)
        finally:
            await gateway.disconnect()

    async def _run(
        self,
        operation: str,
        card_id: str,
        call: Callable[..., Awaitable[Any]],
        *,
        payload: Optional[Dict[str, Any]] = None,
        register: bool = False,
    ) -> Any:
        """
        Run one operation and turn any failure into an OperationError.

        The payload, if any, is encoded to its JSON argument before the
        identity is registered and passed to ``call`` after the contract.
        """
        log = logger.bind(operation=operation, card_id=card_id)
        try:
            arguments = () if payload is None else (to_argument(payload),)
            if register:
                await self._register_identity(card_id)
        except Exception as e:
            return self._failed(log, e)
        try:
            async with self._contract(card_id) as contract:
                result = await call(contract, *arguments)
        except Exception as e:
            return self._failed(log, e)
        log.info("operation_completed")
        return result

    @staticmethod
    def _failed(log: Any, exc: Exception) -> OperationError:
        error = OperationError.from_exception(exc)
        log.error("operation_failed", kind=error.kind.value, error=error.message, exc_info=exc)
        return error

    # --- operations -------------------------------------------------------

    async def register_member(
        self,
        card_id: str,
        account_number: str,
        first_name: str,
        last_name: str,
        email: str,
        phone_number: str,
    ) -> Any:
        """
        Create a Member participant and an identity for it.

        Args:
            card_id: Identity label for the member.
            account_number: Member account number, its identifier on the network.
            first_name: Member first name.
            last_name: Member last name.
            email: Member email.
            phone_number: Member phone number.

        Returns:
            True on success, an OperationError otherwise.
        """
        async def call(contract: Contract, argument: str) -> bool:
            response = await contract.submit_transaction("CreateMember", argument)
            logger.info("create_member_submitted", response=_decode(response, "CreateMember"))
            state = await contract.evaluate_transaction("GetState", account_number)
            logger.info("member_state", state=_decode(state, "GetState"))
            return True

        payload = member_payload(account_number, first_name, last_name, email, phone_number)
        return await self._run("register_member", card_id, call, payload=payload, register=True)

    async def register_partner(self, card_id: str, partner_id: str, name: str) -> Any:
        """
        Create a Partner participant and an identity for it.

        Args:
            card_id: Identity label for the partner.
            partner_id: Partner id, its identifier on the network.
            name: Partner name.

        Returns:
            True on success, an OperationError otherwise.
        """
        async def call(contract: Contract, argument: str) -> bool:
            response = await contract.submit_transaction("CreatePartner", argument)
            logger.info("create_partner_submitted", response=response.decode("utf-8", errors="replace"))
            state = await contract.evaluate_transaction("GetState", partner_id)
            logger.info("partner_state", state=state.decode("utf-8", errors="replace"))
            return True

        payload = partner_payload(partner_id, name)
        return await self._run("register_partner", card_id, call, payload=payload, register=True)

    async def _points_transaction(
        self,
        transaction: str,
        card_id: str,
        account_number: str,
        partner_id: str,
        points: int,
    ) -> Any:
        async def call(contract: Contract, argument: str) -> bool:
            response = await contract.submit_transaction(transaction, argument)
            logger.info("points_transaction_submitted", transaction=transaction, response=_decode(response, transaction))
            return True

        payload = points_payload(points, account_number, partner_id)
        return await self._run(transaction, card_id, call, payload=payload)

    async def earn_points_transaction(self, card_id: str, account_number: str, partner_id: str, points: int) -> Any:
        """Submit an EarnPoints transaction; returns True or an OperationError."""
        return await self._points_transaction("EarnPoints", card_id, account_number, partner_id, points)

    async def use_points_transaction(self, card_id: str, account_number: str, partner_id: str, points: int) -> Any:
        """Submit a UsePoints transaction; returns True or an OperationError."""
        return await self._points_transaction("UsePoints", card_id, account_number, partner_id, points)

    async def _query(self, operation: str, card_id: str, transaction: str, *args: str) -> Any:
        async def call(contract: Contract) -> Any:
            result = _decode(await contract.evaluate_transaction(transaction, *args), transaction)
            logger.debug("query_result", transaction=transaction, result=result)
            return result

        return await self._run(operation, card_id, call)

    async def member_data(self, card_id: str, account_number: str) -> Any:
        """Return the member's ledger state."""
        return await self._query("member_data", card_id, "GetState", account_number)

    async def partner_data(self, card_id: str, partner_id: str) -> Any:
        """Return the partner's ledger state."""
        return await self._query("partner_data", card_id, "GetState", partner_id)

    async def all_partners_info(self, card_id: str) -> Any:
        """Return every partner on the ledger."""
        return await self._query("all_partners_info", card_id, "GetState", ALL_PARTNERS_KEY)

    async def earn_points_transactions_info(self, card_id: str, user_type: str, user_id: str) -> Any:
        """Return the EarnPoints history of a member or partner."""
        return await self._query(
            "earn_points_transactions_info", card_id, "EarnPointsTransactionsInfo", user_type, user_id
        )

    async def use_points_transactions_info(self, card_id: str, user_type: str, user_id: str) -> Any:
        """Return the UsePoints history of a member or partner."""
        return await self._query(
            "use_points_transactions_info", card_id, "UsePointsTransactionsInfo", user_type, user_id
        )

    # camelCase names kept for existing HTTP handlers.
    registerMember = register_member
    registerPartner = register_partner
    earnPointsTransaction = earn_points_transaction
    usePointsTransaction = use_points_transaction
    memberData = member_data
    partnerData = partner_data
    allPartnersInfo = all_partners_info
    earnPointsTransactionsInfo = earn_points_transactions_info
    usePointsTransactionsInfo = use_points_transactions_info
