"""Configuration models for the loyaltynet client.

Three sources feed the client:

  - ``config.json``: the application config (admin identity, MSP id,
    channel and contract names, discovery policy, connection profile path).
  - The connection profile: the network description (organizations, peers,
    certificate authorities, channels) consumed as published by the
    network operator.
  - Environment variables prefixed with ``LOYALTY_`` for process settings
    such as the config path and log level.

The files are read once at startup and the resulting objects are passed
explicitly to the components that need them.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from loyaltynet.errors import ConfigurationError


class DiscoveryOptions(BaseModel):
    """Gateway discovery policy.

    Attributes:
        enabled: Select peers from the client organization rather than the
            channel's static peer list.
        asLocalhost: Rewrite peer hosts to ``localhost``, for networks
            running in local containers.
    """
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    as_localhost: bool = Field(default=True, alias="asLocalhost")


class AppConfig(BaseModel):
    """The application config read from ``config.json``."""
    model_config = ConfigDict(populate_by_name=True)

    connection_file: str = Field(validation_alias=AliasChoices("connection_file", "connectionFile"))
    app_admin: str = Field(default="admin", alias="appAdmin")
    app_admin_secret: str = Field(default="adminpw", alias="appAdminSecret")
    org_msp_id: str = Field(default="Org1MSP", alias="orgMSPID")
    ca_name: str = Field(default="ca.org1.example.com", alias="caName")
    affiliation: str = "org1.department1"
    channel_name: str = Field(default="meete-channel", alias="channelName")
    contract_name: str = Field(default="loyalty", alias="contractName")
    gateway_discovery: DiscoveryOptions = Field(default_factory=DiscoveryOptions, alias="gatewayDiscovery")
    wallet_path: str = Field(default="wallet", alias="walletPath")

    # Directory the config was loaded from; relative paths resolve against it.
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    def resolve(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.base_dir / path

    @property
    def connection_profile_path(self) -> Path:
        return self.resolve(self.connection_file)

    @property
    def wallet_dir(self) -> Path:
        return self.resolve(self.wallet_path)


class ConnectionProfile(BaseModel):
    """A network connection profile.

    Only the sections the client reads are modelled; the rest of the
    document is kept as-is.
    """
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    client: Dict[str, Any] = Field(default_factory=dict)
    organizations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    peers: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    certificateAuthorities: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    channels: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @property
    def client_organization(self) -> Optional[str]:
        return self.client.get("organization")

    def certificate_authority(self, name: str) -> Dict[str, Any]:
        """Returns the profile entry of a certificate authority.

        Raises:
            ConfigurationError: If the profile does not declare the CA.
        """
        try:
            return self.certificateAuthorities[name]
        except KeyError:
            raise ConfigurationError(f"Certificate authority {name} is not defined in the connection profile") from None

    def peer(self, name: str) -> Dict[str, Any]:
        try:
            return self.peers[name]
        except KeyError:
            raise ConfigurationError(f"Peer {name} is not defined in the connection profile") from None

    def peers_for(self, organization: str) -> List[str]:
        """Returns the peer names of an organization."""
        try:
            return list(self.organizations[organization].get("peers", []))
        except KeyError:
            raise ConfigurationError(f"Organization {organization} is not defined in the connection profile") from None

    def channel_peers(self, channel: str) -> List[str]:
        """Returns the peer names listed for a channel."""
        try:
            peers = self.channels[channel].get("peers", {})
        except KeyError:
            raise ConfigurationError(f"Channel {channel} is not defined in the connection profile") from None
        return list(peers)


class Settings(BaseSettings):
    """Process settings taken from ``LOYALTY_*`` environment variables."""
    model_config = SettingsConfigDict(env_prefix="LOYALTY_")

    config_path: str = "config.json"
    log_level: str = "INFO"
    json_logs: bool = False


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"File not found: {path}") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e


def load_config(path: Union[str, Path]) -> AppConfig:
    """Loads the application config.

    Args:
        path: Path of ``config.json``.

    Returns:
        The parsed AppConfig, with relative paths anchored at the file's
        directory.

    Raises:
        ConfigurationError: If the file is missing, malformed, or invalid.
    """
    path = Path(path)
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    try:
        return AppConfig.model_validate({**data, "base_dir": path.resolve().parent})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {path}: {e}") from e


def load_connection_profile(config: AppConfig) -> ConnectionProfile:
    """Loads the connection profile referenced by the config.

    Raises:
        ConfigurationError: If the file is missing, malformed, or invalid.
    """
    path = config.connection_profile_path
    data = _read_json(path)
    try:
        return ConnectionProfile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid connection profile {path}: {e}") from e
