"""CLI entry point for the AllerSafe client."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

from dotenv import load_dotenv

from .checkout import SUBSCRIPTION_PACKAGES, AddressBar, ReconciliationOutcome
from .config import AllerSafeConfig, load_config
from .dashboards import (
    AdminDashboard,
    Dashboard,
    FamilyDashboard,
    RestaurantDashboard,
    create_dashboard,
    render_safety_analysis,
)
from .errors import AllerSafeError, ValidationError
from .gateway import BackendGateway
from .models import Role
from .session import CredentialStore, SessionStore
from .workflow import ActionResult


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="allersafe",
        description="AllerSafe: check restaurant menus against your family's allergies",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=os.environ.get("ALLERSAFE_CONFIG"),
        help="Path to the configuration file (TOML)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command")

    # login
    login_parser = sub.add_parser("login", help="Log in and store the credential")
    login_parser.add_argument("--email", type=str, default=None)
    login_parser.add_argument("--password", type=str, default=None)

    # register
    register_parser = sub.add_parser("register", help="Create an account")
    register_parser.add_argument("--email", type=str, required=True)
    register_parser.add_argument("--name", type=str, required=True)
    register_parser.add_argument(
        "--role", choices=[Role.FAMILY.value, Role.RESTAURANT.value], default="family"
    )
    register_parser.add_argument("--password", type=str, default=None)

    sub.add_parser("logout", help="Forget the stored credential")
    sub.add_parser("whoami", help="Show the logged-in account and its plan")

    # scan
    scan_parser = sub.add_parser("scan", help="Scan a restaurant menu URL")
    scan_parser.add_argument("url", type=str)
    scan_parser.add_argument("--name", type=str, default="", help="Restaurant name")
    scan_parser.add_argument(
        "--member", type=str, default=None, help="Check safety for this family member"
    )
    scan_parser.add_argument(
        "--save", type=str, default=None, metavar="NAME",
        help="Save the analyzed menu to favorites (Premium)",
    )
    scan_parser.add_argument(
        "--request-support", action="store_true",
        help="Ask the platform to partner with this restaurant",
    )
    scan_parser.add_argument("--json", action="store_true", help="Output as JSON")

    sub.add_parser("history", help="Show recent menu scans")
    sub.add_parser("saved", help="Show saved menus (Premium)")

    # subscribe
    subscribe_parser = sub.add_parser("subscribe", help="Start a subscription checkout")
    subscribe_parser.add_argument("package", choices=sorted(SUBSCRIPTION_PACKAGES))

    # reconcile
    reconcile_parser = sub.add_parser(
        "reconcile", help="Confirm a payment from the checkout return URL"
    )
    reconcile_parser.add_argument("return_url", type=str)

    # restaurant
    restaurant_parser = sub.add_parser("restaurant", help="Restaurant dashboard")
    restaurant_parser.add_argument(
        "--import", dest="import_url", type=str, default=None, metavar="URL",
        help="Import menu items from the restaurant's website",
    )
    restaurant_parser.add_argument(
        "--publish", action="store_true", help="Publish the menu"
    )
    restaurant_parser.add_argument(
        "--qr", action="store_true", help="Generate the menu QR code"
    )

    # admin
    admin_parser = sub.add_parser("admin", help="Platform admin dashboard")
    admin_parser.add_argument(
        "--set-status", nargs=2, metavar=("REQUEST_ID", "STATUS"), default=None,
        help="Update a restaurant support request",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    config = load_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(_dispatch(config, args))
    except AllerSafeError as e:
        print(e.user_message, file=sys.stderr)
        sys.exit(1)


async def _dispatch(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    match args.command:
        case "login":
            await _cmd_login(config, args)
        case "register":
            await _cmd_register(config, args)
        case "logout":
            _cmd_logout(config)
        case "whoami":
            await _cmd_whoami(config)
        case "scan":
            await _cmd_scan(config, args)
        case "history":
            await _cmd_history(config)
        case "saved":
            await _cmd_saved(config)
        case "subscribe":
            await _cmd_subscribe(config, args)
        case "reconcile":
            await _cmd_reconcile(config, args)
        case "restaurant":
            await _cmd_restaurant(config, args)
        case "admin":
            await _cmd_admin(config, args)


@asynccontextmanager
async def _connect(
    config: AllerSafeConfig, restore: bool = True
) -> AsyncIterator[tuple[BackendGateway, SessionStore]]:
    """Open a gateway bound to a session restored from the stored credential."""
    session = SessionStore(CredentialStore(config.session.token_path))
    async with BackendGateway(
        base_url=config.api.base_url,
        timeout=config.api.timeout,
        token_provider=session.get_token,
    ) as gateway:
        if restore:
            await session.restore(gateway)
        yield gateway, session


def _require_login(session: SessionStore) -> None:
    if not session.is_authenticated:
        raise ValidationError("Not logged in. Run `allersafe login` first.")


def _finish(dashboard: Dashboard, result: ActionResult) -> None:
    """Print the dashboard's notices; a failed action ends the command."""
    notices, dashboard.notices = dashboard.notices, []
    if result.stale:
        print("Request superseded; result discarded.", file=sys.stderr)
        return
    if result.ok:
        for notice in notices:
            print(notice)
        return
    for notice in notices:
        print(notice, file=sys.stderr)
    if result.error is not None and not notices:
        raise result.error
    sys.exit(1)


def _flush(dashboard: Dashboard) -> None:
    for notice in dashboard.notices:
        print(notice, file=sys.stderr)
    dashboard.notices = []


async def _cmd_login(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    email = args.email or os.getenv("ALLERSAFE_EMAIL") or input("Email: ")
    password = (
        args.password or os.getenv("ALLERSAFE_PASSWORD") or getpass.getpass("Password: ")
    )
    async with _connect(config, restore=False) as (gateway, session):
        principal = await session.login(gateway, email.strip(), password)
    print(f"Logged in as {principal.name} ({principal.role.value})")


async def _cmd_register(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    password = args.password or getpass.getpass("Password: ")
    async with _connect(config, restore=False) as (gateway, session):
        principal = await session.register(
            gateway, args.email.strip(), password, args.name.strip(), args.role
        )
    print(f"Welcome, {principal.name}! Your {principal.role.value} account is ready.")


def _cmd_logout(config: AllerSafeConfig) -> None:
    SessionStore(CredentialStore(config.session.token_path)).logout()
    print("Logged out.")


async def _cmd_whoami(config: AllerSafeConfig) -> None:
    async with _connect(config) as (gateway, session):
        _require_login(session)
        p = session.principal
        caps = session.capabilities
        print(f"{p.name} <{p.email}>")
        print(f"  Role:   {p.role.value}")
        print(f"  Plan:   {p.subscription_status.value}")
        if p.subscription is not None:
            print(f"  Package: {p.subscription.package_name}")
            if p.subscription.next_billing_date:
                print(f"  Next billing: {p.subscription.next_billing_date}")
        print(f"  Capabilities: {', '.join(sorted(c.value for c in caps.enabled))}")


async def _family_dashboard(
    gateway: BackendGateway, session: SessionStore, config: AllerSafeConfig
) -> FamilyDashboard:
    _require_login(session)
    dashboard = create_dashboard(gateway, session, checkout=config.checkout)
    if not isinstance(dashboard, FamilyDashboard):
        raise ValidationError("This command is only available to family accounts.")
    await dashboard.mount()
    _flush(dashboard)
    return dashboard


async def _cmd_scan(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    async with _connect(config) as (gateway, session):
        dashboard = await _family_dashboard(gateway, session, config)
        try:
            await _run_scan(dashboard, args)
        finally:
            dashboard.unmount()


async def _run_scan(dashboard: FamilyDashboard, args: argparse.Namespace) -> None:
    if not args.json:
        print("🔍 Scanning menu...")
    _finish(dashboard, await dashboard.scan_menu(args.url, args.name))
    scan = dashboard.workflow.scan

    analysis = None
    if args.member:
        member = dashboard.family.member(args.member) if dashboard.family else None
        if member is None:
            raise ValidationError(f"No family member named {args.member!r}")
        _finish(dashboard, await dashboard.analyze_for(member))
        analysis = dashboard.workflow.analysis

    if args.json:
        data = {
            "scan_id": scan.scan_id,
            "restaurant_name": scan.restaurant_name,
            "url": scan.url,
            "total_items_found": scan.total_items_found,
            "menu_items": [
                {
                    "name": item.name,
                    "price": item.price,
                    "detected_allergens": sorted(item.detected_allergens),
                }
                for item in scan.menu_items
            ],
        }
        if analysis is not None:
            data["analysis"] = [
                {
                    "name": item.name,
                    "verdict": verdict.value,
                    "matching_allergens": list(analyzed.matching_allergens) if analyzed else [],
                }
                for item, verdict, analyzed in analysis.rows(scan)
            ]
        print(json.dumps(data, ensure_ascii=False, indent=2))
    elif analysis is not None:
        print()
        print(
            render_safety_analysis(
                analysis, dashboard.capabilities, dashboard.workflow.member, scan
            )
        )
    else:
        print(f"\n📋 {scan.restaurant_name or scan.url}: {scan.total_items_found} items")
        for item in scan.menu_items:
            allergens = ", ".join(sorted(item.detected_allergens)) or "none detected"
            print(f"  {item.name:<28} {allergens}")
        if scan.disclaimer:
            print(f"\nImportant: {scan.disclaimer}")

    if args.save is not None:
        _finish(dashboard, await dashboard.save_menu(args.save))
    if args.request_support:
        _finish(dashboard, await dashboard.request_support())


async def _cmd_history(config: AllerSafeConfig) -> None:
    async with _connect(config) as (gateway, session):
        dashboard = await _family_dashboard(gateway, session, config)
        dashboard.unmount()
        if not dashboard.scan_history:
            print("No scans yet.")
            return
        print(f"🕘 Recent scans ({len(dashboard.scan_history)}):")
        for scan in dashboard.scan_history:
            print(
                f"  {scan.get('restaurant_name', ''):<28} "
                f"{scan.get('total_items_found', 0):>3} items  {scan.get('restaurant_url', '')}"
            )


async def _cmd_saved(config: AllerSafeConfig) -> None:
    async with _connect(config) as (gateway, session):
        dashboard = await _family_dashboard(gateway, session, config)
        dashboard.unmount()
        _finish(dashboard, await dashboard.load_saved_menus())
        if not dashboard.saved_menus:
            print("No saved menus.")
            return
        for menu in dashboard.saved_menus:
            print(f"  ⭐ {menu.get('menu_name', '')}  {menu.get('notes') or ''}".rstrip())


async def _cmd_subscribe(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    async with _connect(config) as (gateway, session):
        _require_login(session)
        address = AddressBar(config.checkout.origin_url)
        dashboard = create_dashboard(
            gateway, session, address=address, checkout=config.checkout
        )
        _finish(dashboard, await dashboard.subscribe(args.package))
        print("Complete your payment at:")
        print(f"  {address.redirected_to}")
        print("Then run `allersafe reconcile <return URL>`.")


async def _cmd_reconcile(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    async with _connect(config) as (gateway, session):
        _require_login(session)
        address = AddressBar(args.return_url)
        dashboard = create_dashboard(
            gateway, session, address=address, checkout=config.checkout
        )
        await dashboard.mount()
        dashboard.notices = []
        try:
            if dashboard.reconciliation is None:
                raise ValidationError("That URL is not a successful checkout return.")
            print("⏳ Checking payment status...")
            result = await dashboard.reconciliation
        finally:
            dashboard.unmount()

        print(result.message)
        print(f"  Plan: {session.capabilities.status.value}")
        print(f"  Address: {address.url}")
        if result.outcome is not ReconciliationOutcome.ACTIVATED:
            sys.exit(1)


async def _cmd_restaurant(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    async with _connect(config) as (gateway, session):
        _require_login(session)
        dashboard = create_dashboard(gateway, session, checkout=config.checkout)
        if not isinstance(dashboard, RestaurantDashboard):
            raise ValidationError("This command is only available to restaurant accounts.")
        await dashboard.mount()
        try:
            _flush(dashboard)
            if args.import_url:
                _finish(dashboard, await dashboard.import_menu(args.import_url))
            if args.publish:
                _finish(dashboard, await dashboard.publish_menu())
            if args.qr:
                _finish(dashboard, await dashboard.generate_qr_code())
        finally:
            dashboard.unmount()
        print(dashboard.render())


async def _cmd_admin(config: AllerSafeConfig, args: argparse.Namespace) -> None:
    async with _connect(config) as (gateway, session):
        _require_login(session)
        dashboard = create_dashboard(gateway, session, checkout=config.checkout)
        if not isinstance(dashboard, AdminDashboard):
            raise ValidationError("Admin access required")
        await dashboard.mount()
        try:
            _flush(dashboard)
            if args.set_status:
                request_id, new_status = args.set_status
                _finish(
                    dashboard,
                    await dashboard.update_request_status(request_id, new_status),
                )
        finally:
            dashboard.unmount()
        print(dashboard.render())
