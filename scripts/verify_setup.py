#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration, the store backend, Redis and the WhatsApp
credentials before the API is started.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import importlib
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv(project_root / ".env")

GREEN, RED, YELLOW, RESET = "\033[92m", "\033[91m", "\033[93m", "\033[0m"

REQUIRED_PACKAGES = (
    "fastapi",
    "uvicorn",
    "pydantic_settings",
    "sqlalchemy",
    "asyncpg",
    "redis",
    "httpx",
    "tenacity",
)

TABLES = (
    "clinics",
    "doctors",
    "doctor_settings",
    "doctor_working_hours",
    "doctor_blocked_slots",
    "patients",
    "patient_contacts",
    "appointments",
)


def section(title: str) -> None:
    print(f"\n{'=' * 60}\n {title}\n{'=' * 60}")


def report(name: str, ok: bool, message: str = "") -> bool:
    label = f"{GREEN}[PASS]{RESET}" if ok else f"{RED}[FAIL]{RESET}"
    print(f"  {label} {name}{f' - {message}' if message else ''}")
    return ok


def check_packages() -> bool:
    missing = []
    for package in REQUIRED_PACKAGES:
        try:
            importlib.import_module(package)
        except ImportError:
            missing.append(package)
    if missing:
        return report("Python packages", False, f"Missing: {', '.join(missing)}")
    return report("Python packages", True, "All installed")


def check_settings():
    """Load settings the way the application does; None if invalid."""
    try:
        from app.config import get_settings

        settings = get_settings()
    except Exception as e:
        report("Settings", False, str(e)[:80])
        return None

    report(".env file", True, "Found" if (project_root / ".env").exists() else "Not found, using environment")
    report("APP_ENV", True, settings.app_env)
    report("STORE_BACKEND", True, settings.store_backend)
    report(
        "Slot policy defaults",
        True,
        f"{settings.default_slot_minutes}min slots, "
        f"{settings.default_lead_time_minutes}min lead, "
        f"{settings.default_buffer_minutes}min buffer",
    )
    return settings


async def check_postgres(settings) -> bool:
    """Connection, btree_gist and the scheduling tables."""
    if settings.store_backend != "postgres":
        return report("PostgreSQL", True, "Skipped, in-memory store")

    from sqlalchemy import text

    from app.infra.database import close_db, get_db_context, missing_extensions

    try:
        missing = await missing_extensions()
        report("PostgreSQL", True, settings.database_url.split("@")[-1])
        ok = report(
            "Extensions",
            not missing,
            "btree_gist installed" if not missing else f"Missing: {', '.join(missing)}",
        )

        async with get_db_context() as db:
            result = await db.execute(
                text("SELECT tablename FROM pg_tables WHERE schemaname = 'public'")
            )
            existing = {row[0] for row in result}
        absent = [t for t in TABLES if t not in existing]
        ok = report(
            "Schema",
            not absent,
            "All tables present" if not absent else f"Missing: {', '.join(absent)} (start in development to create)",
        ) and ok
        return ok
    except Exception as e:
        return report("PostgreSQL", False, str(e)[:80])
    finally:
        await close_db()


async def check_redis() -> bool:
    from app.infra.redis import RedisClient, check_redis_health

    healthy = await check_redis_health()
    await RedisClient.close()
    if healthy:
        return report("Redis", True, "Connected")
    print(f"  {YELLOW}[WARN]{RESET} Redis - unreachable, sessions will be kept in memory")
    return False


def check_messaging(settings) -> bool:
    if not settings.messaging_configured:
        print(f"  {YELLOW}[WARN]{RESET} WhatsApp - credentials not set, replies will not be delivered")
        return False
    token = settings.whatsapp_access_token
    masked = f"{token[:6]}...{token[-4:]}" if len(token) > 12 else "***"
    return report(
        "WhatsApp",
        True,
        f"Sender {settings.whatsapp_phone_number_id} via {settings.whatsapp_api_version}, token {masked}",
    )


async def main() -> int:
    print("\n Clinic Booking - Setup Verification")

    section("Dependencies")
    if not check_packages():
        return 1

    section("Configuration")
    settings = check_settings()
    if settings is None:
        return 1

    section("Store")
    store_ok = await check_postgres(settings)

    section("Sessions and messaging")
    optional_ok = await check_redis()
    optional_ok = check_messaging(settings) and optional_ok

    section("Summary")
    if not store_ok:
        print(f"\n  {RED}The scheduling store is not ready. Fix the issues above first.{RESET}\n")
        return 1
    if not optional_ok:
        print(f"\n  {YELLOW}Ready with reduced functionality.{RESET}\n")
        return 0
    print(f"\n  {GREEN}All checks passed.{RESET} Start with: uvicorn app.main:app --reload\n")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
