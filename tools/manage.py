#!/usr/bin/env python3
"""
VetChain Management CLI

Commands:
- assets: List the aggregated asset views of an owner
- history: Show the medical history of an asset
- auth-link: Build the authorization deep link (and QR) for a veterinarian
- demo: Seed an in-memory ledger and print everything it resolves
- health-check: Show the effective configuration

The ledger follows VETCHAIN_LEDGER. On the in-memory emulation (default),
assets and history run against a runtime seeded with the demo animals.

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage demo
    python -m tools.manage assets 0xb2b2b2b2b2b2b2b2b2b2b2b2b2b2b2b2b2b2b2b2
    python -m tools.manage history 9410001
    python -m tools.manage auth-link 0xa1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1 --qr vet.png
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def _seeded_runtime():
    from vetchain.config import Settings
    from vetchain.runtime import create_runtime, seed_demo_data

    runtime = create_runtime(Settings.from_env())
    await seed_demo_data(runtime)
    return runtime


def cmd_assets(args):
    """Print the asset views of an owner."""
    from vetchain.chain.address import is_address

    if not is_address(args.owner):
        print(f"Error: invalid owner address {args.owner!r}")
        return 1

    async def run():
        runtime = await _seeded_runtime()
        try:
            return await runtime.aggregator.resolve_owned_assets(args.owner)
        finally:
            await runtime.aclose()

    views = asyncio.run(run())
    if not views:
        print("No assets found.")
        return 0
    _print_json([v.model_dump(mode="json") for v in views])
    return 0


def cmd_history(args):
    """Print the medical history of an asset."""
    async def run():
        runtime = await _seeded_runtime()
        try:
            return await runtime.aggregator.resolve_medical_history(args.asset_id)
        finally:
            await runtime.aclose()

    records = asyncio.run(run())
    if not records:
        print("No medical records.")
        return 0
    _print_json([r.model_dump(mode="json", by_alias=True) for r in records])
    return 0


def cmd_auth_link(args):
    """Print the authorization deep link for a veterinarian."""
    from vetchain.config import Settings
    from vetchain.core.deeplink import build_authorization_link, render_qr_png
    from vetchain.core.errors import ValidationError

    try:
        uri = build_authorization_link(args.vet, Settings.from_env())
    except ValidationError as e:
        print(f"Error: {e.message}")
        return 1

    print(uri)
    if args.qr:
        Path(args.qr).write_bytes(render_qr_png(uri))
        print(f"QR code written to {args.qr}")
    return 0


def cmd_demo(args):
    """Seed the in-memory ledger and print the aggregated views."""
    from vetchain.observability import get_metrics
    from vetchain.runtime import DEMO_OWNER

    async def run():
        runtime = await _seeded_runtime()
        try:
            views = await runtime.aggregator.resolve_owned_assets(DEMO_OWNER)
            histories = {
                v.asset_id: await runtime.aggregator.resolve_medical_history(v.asset_id)
                for v in views
            }
            vets = await runtime.aggregator.resolve_authorized_veterinarians(DEMO_OWNER)
            return views, histories, vets
        finally:
            await runtime.aclose()

    views, histories, vets = asyncio.run(run())

    print(f"=== Owner {DEMO_OWNER} ===")
    for view in views:
        print(f"\n[{view.asset_id}] {view.name} ({view.description}) - {view.health_label}")
        for key, value in view.traits.items():
            print(f"  {key}: {value}")
        for record in histories[view.asset_id]:
            print(f"  #{record.position} {record.timestamp} {record.diagnosis}")

    print("\n=== Authorized veterinarians ===")
    for vet in vets:
        status = "[OK]" if vet.has_valid_credential else "[NO CREDENTIAL]"
        print(f"  {vet.address} {status}")

    print("\n=== Metrics ===")
    _print_json(get_metrics().get_summary())
    return 0


def cmd_health_check(args):
    """Show the effective configuration."""
    from vetchain.config import LedgerDriver, Settings, get_content_store_driver, get_ledger_driver

    print("=== VetChain Health Check ===\n")
    settings = Settings.from_env()

    print(f"  Network: {settings.network.chain_name} ({settings.network.chain_id_hex})")
    print(f"  Network config version: {settings.network.version}")
    print(f"  Credential registry: {settings.contracts.credential_registry}")
    print(f"  Identity registry: {settings.contracts.identity_registry}")
    print(f"  Medical ledger: {settings.contracts.medical_ledger}")

    try:
        driver = get_content_store_driver()
    except ValueError as e:
        print(f"  Content store: [FAIL] {e}")
        return 1
    print(f"  Content store: {driver.value}")
    print(f"  Gateway: {settings.content_store.gateway_url}")

    try:
        ledger_driver = get_ledger_driver()
    except ValueError as e:
        print(f"  Ledger: [FAIL] {e}")
        return 1
    print(f"  Ledger: {ledger_driver.value}")
    if ledger_driver == LedgerDriver.RPC:
        if settings.rpc.signer_key:
            print("  Signer key: [OK] Set")
        else:
            print("  Signer key: [WARN] Not set (the node must hold the account)")

    if settings.content_store.pinning_jwt:
        print("  Pinning JWT: [OK] Set")
    else:
        print("  Pinning JWT: [WARN] Not set (uploads stay in memory)")

    print(f"  Credential precondition: {'on' if settings.verify_credentials else 'off'}")
    print("\n=== Health Check Complete ===")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="VetChain Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # assets
    p_assets = subparsers.add_parser("assets", help="List an owner's assets")
    p_assets.add_argument("owner", help="Owner address")

    # history
    p_history = subparsers.add_parser("history", help="Show an asset's medical history")
    p_history.add_argument("asset_id", type=int, help="Chip id")

    # auth-link
    p_link = subparsers.add_parser("auth-link", help="Build a veterinarian authorization link")
    p_link.add_argument("vet", help="Veterinarian address")
    p_link.add_argument("--qr", help="Also write the link as a PNG QR code to this file")

    # demo
    subparsers.add_parser("demo", help="Seed an in-memory ledger and print the views")

    # health-check
    subparsers.add_parser("health-check", help="Show the effective configuration")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "assets": cmd_assets,
        "history": cmd_history,
        "auth-link": cmd_auth_link,
        "demo": cmd_demo,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
