import asyncio
import sys

from loyaltynet.clients import LoyaltyNetwork, OperationError
from loyaltynet.config import load_config, load_connection_profile
from loyaltynet.enroll_admin import enroll_admin
from loyaltynet.utils.logging import setup_logging
from loyaltynet.wallet import new_file_system_wallet


def _check(step, result):
    if isinstance(result, OperationError):
        print(f"❌ {step} failed ({result.kind.value}): {result.message}")
        sys.exit(1)
    print(f"✅ {step}: {result}")
    return result


async def run(config_path):
    # ==========================================================================
    # 1. Load configuration and open the wallet
    # ==========================================================================
    print("🚀 Step 1: loading configuration...")

    config = load_config(config_path)
    profile = load_connection_profile(config)
    wallet = await new_file_system_wallet(config.wallet_dir)

    print(f"   - Channel: {config.channel_name}")
    print(f"   - Contract: {config.contract_name}")
    print(f"   - Wallet: {config.wallet_dir}")

    # ==========================================================================
    # 2. Make sure the admin identity exists
    # ==========================================================================
    print("\n🚀 Step 2: enrolling admin...")

    if await enroll_admin(config, profile, wallet):
        print(f"✅ Admin '{config.app_admin}' enrolled")
    else:
        print(f"✅ Admin '{config.app_admin}' already in wallet")

    network = LoyaltyNetwork(config, profile, wallet)

    # ==========================================================================
    # 3. Register a partner and a member
    # ==========================================================================
    print("\n🚀 Step 3: registering participants...")

    _check("Register partner", await network.register_partner("coffee-card", "PARTNER1", "Coffee Shop"))
    _check("Register member", await network.register_member(
        "jane-card", "ACC1", "Jane", "Doe", "jane@example.com", "555-0100",
    ))

    # ==========================================================================
    # 4. Earn and spend points
    # ==========================================================================
    print("\n🚀 Step 4: earning and using points...")

    _check("Earn 50 points", await network.earn_points_transaction("jane-card", "ACC1", "PARTNER1", 50))
    _check("Use 20 points", await network.use_points_transaction("jane-card", "ACC1", "PARTNER1", 20))

    # ==========================================================================
    # 5. Read back ledger state
    # ==========================================================================
    print("\n🚀 Step 5: querying ledger...")

    member = _check("Member data", await network.member_data("jane-card", "ACC1"))
    print(f"   - Points balance: {member.get('points')}")
    _check("All partners", await network.all_partners_info("jane-card"))
    _check("Earn history", await network.earn_points_transactions_info("jane-card", "member", "ACC1"))
    _check("Use history", await network.use_points_transactions_info("jane-card", "member", "ACC1"))
    _check("Partner data", await network.partner_data("coffee-card", "PARTNER1"))


def main():
    setup_logging("WARNING")
    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.json"
    asyncio.run(run(config_path))


if __name__ == "__main__":
    main()
