#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the scheduling service.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask(value: str) -> str:
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_env_file() -> bool:
    """Check if .env file exists."""
    exists = (project_root / ".env").exists()
    print_result(".env file", exists, "Found" if exists else "Not found (using process environment)")
    return exists


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
        "httpx",
        "anthropic",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    print_result("Python packages", True, "All required packages installed")
    return True


def check_settings() -> bool:
    """Load Settings and validate the scheduling defaults."""
    try:
        from app.config import get_settings
        from app.core.scheduling.types import BusinessHoursConfig

        settings = get_settings()
        hours = BusinessHoursConfig.defaults()
    except Exception as e:
        print_result("Settings", False, str(e)[:80])
        return False

    print_result("Store backend", True, settings.store_backend)
    print_result(
        "Default business hours",
        True,
        f"{hours.availability_start:%H:%M}-{hours.availability_end:%H:%M} "
        f"every {hours.slot_duration_minutes} min ({hours.timezone})",
    )
    print_result("Calendar timeout", True, f"{settings.calendar_timeout_seconds}s")
    return True


def check_credentials() -> dict[str, bool]:
    """Check optional credentials; each one enables a feature."""
    results = {}
    features = [
        ("ANTHROPIC_API_KEY", "chat receptionist"),
        ("GOOGLE_CLIENT_ID", "Google Calendar linking"),
        ("GOOGLE_CLIENT_SECRET", "Google Calendar linking"),
        ("SENDGRID_API_KEY", "confirmation emails"),
    ]
    for var, feature in features:
        value = os.getenv(var, "")
        results[var] = bool(value)
        if value:
            print_result(var, True, f"Set ({mask(value)})")
        else:
            print_result(var, False, f"Not set - {feature} disabled")
    return results


async def check_postgres() -> bool:
    """Verify PostgreSQL connection."""
    from app.infra.database import check_db_health

    healthy = await check_db_health()
    print_result("PostgreSQL", healthy, "Connection successful" if healthy else "Connection failed")
    return healthy


async def check_redis() -> bool:
    """Verify Redis connection."""
    from app.infra.redis import check_redis_health

    healthy = await check_redis_health()
    print_result(
        "Redis",
        healthy,
        "Connection successful" if healthy else "Connection failed (process-local locks)",
    )
    return healthy


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Receptionist Scheduling - Setup Verification")
    print("="*60)

    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        critical_failed = True

    print_header("Settings")
    if not check_settings():
        critical_failed = True

    print_header("Credentials")
    check_credentials()

    print_header("Service Connections")
    if not critical_failed:
        from app.config import get_settings

        if get_settings().store_backend == "sql":
            if not await check_postgres():
                critical_failed = True
        else:
            print_result("PostgreSQL", True, "Skipped - memory stores")

        await check_redis()  # Non-critical

    print_header("Summary")
    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required checks failed.\033[0m")
        print("  Please fix the issues above before running the application.\n")
        return 1

    print("\n  \033[92mAll required checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload\n")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
