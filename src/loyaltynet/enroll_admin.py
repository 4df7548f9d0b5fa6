"""Enrolls the application's admin identity and stores it in the wallet.

Run once before any other operation:

    loyalty-enroll-admin --config config.json

Enrolling again once the admin is in the wallet is a no-op. Any failure
exits with status 1.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable, List, Optional

from loyaltynet.clients.ca_client import CAClient
from loyaltynet.config import AppConfig, ConnectionProfile, Settings, load_config, load_connection_profile
from loyaltynet.types import Credentials, X509Identity
from loyaltynet.utils import crypto
from loyaltynet.utils.logging import get_logger, setup_logging
from loyaltynet.wallet import Wallet, new_file_system_wallet

logger = get_logger(__name__)


async def enroll_admin(
    config: AppConfig,
    profile: ConnectionProfile,
    wallet: Wallet,
    *,
    ca_client_factory: Optional[Callable[[], CAClient]] = None,
) -> bool:
    """
    Enroll the admin identity unless the wallet already holds it.

    Args:
        config: Application config; supplies the admin id, secret and MSP id.
        profile: Connection profile declaring the CA.
        wallet: Wallet receiving the identity.
        ca_client_factory: Builds the CA client; defaults to the profile's
                           configured CA.

    Returns:
        True if the admin was enrolled, False if it was already present.

    Raises:
        NetworkError: The CA could not be reached.
        EnrollmentError: The CA rejected the enrollment.
    """
    admin_id = config.app_admin
    if await wallet.get(admin_id) is not None:
        logger.info("admin_identity_exists", admin=admin_id)
        return False

    factory = ca_client_factory or (lambda: CAClient.from_profile(profile, config.ca_name))
    async with factory() as ca:
        enrollment = await ca.enroll(admin_id, config.app_admin_secret)

    identity = X509Identity(
        credentials=Credentials(
            certificate=enrollment.certificate,
            privateKey=crypto.private_key_to_pem(enrollment.key),
        ),
        mspId=config.org_msp_id,
    )
    await wallet.put(admin_id, identity)
    logger.info("admin_identity_enrolled", admin=admin_id, msp_id=config.org_msp_id)
    return True


async def _run(config_path: str) -> bool:
    config = load_config(config_path)
    profile = load_connection_profile(config)
    wallet = await new_file_system_wallet(config.wallet_dir)
    return await enroll_admin(config, profile, wallet)


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings()
    parser = argparse.ArgumentParser(description="Enroll the admin identity into the wallet.")
    parser.add_argument("--config", default=settings.config_path, help="path of config.json")
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--json-logs", action="store_true", default=settings.json_logs)
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.json_logs)
    try:
        asyncio.run(_run(args.config))
    except Exception as e:
        logger.error("admin_enrollment_failed", error=str(e), exc_info=True)
        sys.exit(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
