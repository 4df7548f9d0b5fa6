"""Ledger gateway: Gateway, Network and Contract over a peer REST front end.

Proposals are canonical JSON signed with the caller's enrolled key and sent
to ``/api/v1/channels/{channel}/contracts/{contract}/{submit|evaluate}``
with the signature in the ``X-Fabric-Signature`` header. This REST contract
is served by a front end deployed beside each peer, not by the peer's gRPC
service.
"""
from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from loyaltynet.clients.base_client import BaseClient
from loyaltynet.config import ConnectionProfile, DiscoveryOptions
from loyaltynet.errors import (
    ConfigurationError,
    IdentityNotFound,
    InvalidParameterError,
    InvalidResponseError,
    TransactionError,
)
from loyaltynet.types import X509Identity
from loyaltynet.utils import crypto
from loyaltynet.utils.logging import get_logger
from loyaltynet.wallet import Wallet

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Fabric-Signature"


def _peer_endpoint(peer: Dict[str, Any], as_localhost: bool) -> str:
    """
    Return the REST gateway URL of a peer entry.

    The entry's ``gatewayUrl`` wins; otherwise ``url`` is used when it is an
    http(s) URL.

    Raises:
        ConfigurationError: If the peer exposes no usable gateway URL.
    """
    url = peer.get("gatewayUrl") or peer.get("url") or ""
    if not url.startswith(("http://", "https://")):
        raise ConfigurationError(f"Peer has no http(s) gateway endpoint: {url or '<missing>'}")
    if as_localhost:
        url = str(httpx.URL(url).copy_with(host="localhost"))
    return url


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


class GatewayClient(BaseClient):
    """HTTP client of one peer's REST gateway endpoint."""

    async def invoke(
        self,
        identity: X509Identity,
        channel: str,
        contract: str,
        transaction: str,
        arguments: List[str],
        *,
        submit: bool,
    ) -> bytes:
        """
        Sign a transaction proposal with the caller identity and send it.

        Args:
            identity: The caller identity; its key signs the proposal.
            channel: Channel name.
            contract: Contract name.
            transaction: Transaction name, e.g. "CreateMember".
            arguments: String arguments of the transaction.
            submit: True to submit (ordered and committed), False to
                    evaluate (read-only).

        Returns:
            The transaction response payload.

        Raises:
            NetworkError: The peer could not be reached.
            TransactionError: The gateway or the contract rejected the call.
            InvalidResponseError: The gateway's answer could not be decoded.
        """
        creator = (identity.mspId + identity.credentials.certificate).encode("utf-8")
        nonce, tx_id = crypto.new_transaction_id(creator)
        proposal = {
            "channel": channel,
            "contract": contract,
            "transaction": transaction,
            "arguments": arguments,
            "transactionId": tx_id,
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "creator": {
                "mspId": identity.mspId,
                "certificate": identity.credentials.certificate,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        body = json.dumps(proposal, sort_keys=True, separators=(",", ":")).encode("utf-8")
        key = crypto.load_private_key(identity.credentials.privateKey)
        signature = base64.b64encode(crypto.sign(key, body)).decode("ascii")

        action = "submit" if submit else "evaluate"
        path = f"/api/v1/channels/{channel}/contracts/{contract}/{action}"
        logger.debug("gateway_invoke", action=action, transaction=transaction, transaction_id=tx_id)

        resp = await self._post(
            path,
            content=body,
            headers={"Content-Type": "application/json", SIGNATURE_HEADER: signature},
        )
        if resp.is_error:
            raise TransactionError(_error_message(resp), tx_id)

        try:
            result = resp.json().get("result") or ""
            return base64.b64decode(result, validate=True)
        except (ValueError, AttributeError) as e:
            raise InvalidResponseError(f"Malformed gateway response for {transaction}: {e}") from e


class Contract:
    """A named contract on a channel."""

    def __init__(self, network: "Network", name: str) -> None:
        self._network = network
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def submit_transaction(self, name: str, *args: str) -> bytes:
        """Submit a state-changing transaction and return its response payload."""
        return await self._network.invoke(self._name, name, list(args), submit=True)

    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        """Evaluate a read-only transaction and return its response payload."""
        return await self._network.invoke(self._name, name, list(args), submit=False)


class Network:
    """A channel reached through a gateway."""

    def __init__(self, gateway: "Gateway", channel: str, client: GatewayClient) -> None:
        self._gateway = gateway
        self._channel = channel
        self._client = client

    @property
    def name(self) -> str:
        return self._channel

    def get_contract(self, name: str) -> Contract:
        if not name:
            raise InvalidParameterError("contract name must be provided")
        return Contract(self, name)

    async def invoke(self, contract: str, transaction: str, arguments: List[str], *, submit: bool) -> bytes:
        return await self._client.invoke(
            self._gateway.identity,
            self._channel,
            contract,
            transaction,
            arguments,
            submit=submit,
        )


class Gateway:
    """Connection to the ledger network on behalf of one wallet identity."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        """
        Args:
            transport: Optional httpx transport used for every peer client.
        """
        self._transport = transport
        self._profile: Optional[ConnectionProfile] = None
        self._identity: Optional[X509Identity] = None
        self._label: Optional[str] = None
        self._discovery = DiscoveryOptions()
        self._clients: Dict[str, GatewayClient] = {}

    @property
    def identity(self) -> X509Identity:
        if self._identity is None:
            raise InvalidParameterError("Gateway is not connected")
        return self._identity

    async def connect(
        self,
        profile: ConnectionProfile,
        *,
        wallet: Wallet,
        identity: str,
        discovery: Optional[DiscoveryOptions] = None,
    ) -> None:
        """
        Bind the gateway to a connection profile and a wallet identity.

        Args:
            profile: The network connection profile.
            wallet: Wallet holding the caller identity.
            identity: Label of the caller identity in the wallet.
            discovery: Peer discovery policy.

        Raises:
            IdentityNotFound: The wallet holds no identity under the label.
        """
        found = await wallet.get(identity)
        if found is None:
            raise IdentityNotFound(f"Identity not found in wallet: {identity}")
        self._profile = profile
        self._identity = found
        self._label = identity
        self._discovery = discovery or DiscoveryOptions()
        logger.debug("gateway_connected", identity=identity, discovery=self._discovery.enabled)

    def _peer_names(self, channel: str) -> List[str]:
        profile = self._profile
        if self._discovery.enabled:
            org = profile.client_organization
            names = profile.peers_for(org) if org else []
            return names or list(profile.peers)
        return profile.channel_peers(channel)

    async def get_network(self, channel: str) -> Network:
        """
        Resolve a channel to a Network bound to one of its peers.

        Raises:
            InvalidParameterError: The gateway is not connected.
            ConfigurationError: No peer with a gateway endpoint serves the channel.
        """
        if self._profile is None:
            raise InvalidParameterError("Gateway is not connected")
        names = self._peer_names(channel)
        if not names:
            raise ConfigurationError(f"No peers available for channel {channel}")

        peer = self._profile.peer(names[0])
        url = _peer_endpoint(peer, self._discovery.as_localhost)
        client = self._clients.get(url)
        if client is None:
            tls = peer.get("tlsCACerts") or {}
            client = GatewayClient(base_url=url, trusted_roots=tls.get("pem"), transport=self._transport)
            self._clients[url] = client
        return Network(self, channel, client)

    async def disconnect(self) -> None:
        """Close every peer client opened by this gateway."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()
        logger.debug("gateway_disconnected", identity=self._label)

    async def __aenter__(self) -> "Gateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()
