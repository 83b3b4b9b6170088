"""Verify that the setup is correct before running the synchronizer."""
import asyncio
import os
import sys
import time
from dotenv import load_dotenv
from portfolio_sync.config import load_settings
from portfolio_sync.domain.errors import StorageError
from portfolio_sync.infrastructure.conditional_fetcher import create_session, format_epoch
from portfolio_sync.infrastructure.json_file_store import JsonFileStore

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def check_environment_variables():
    """Check required environment variables."""
    print("Checking environment variables...")

    optional_vars = [
        "PORTFOLIO_API_BASE", "PORTFOLIO_PINNED_URL", "PORTFOLIO_CACHE_DIR",
        "PORTFOLIO_CACHE_TTL", "PORTFOLIO_RETRY_INTERVAL"
    ]

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"❌ {e}")
        return False

    print("✅ Required environment variables set")
    print(f"   PORTFOLIO_USERNAME: {settings.username}")

    for var in optional_vars:
        if os.getenv(var):
            print(f"   {var}: {os.getenv(var)}")

    return True


def check_cache_directory():
    """Check that the cache directory is writable."""
    print("\nChecking cache directory...")

    settings = load_settings()
    store = JsonFileStore(settings.cache_dir)
    try:
        store.write("verify_setup", {"checked_at": time.time()})
        os.remove(os.path.join(settings.cache_dir, "verify_setup.json"))
    except (StorageError, OSError) as e:
        print(f"❌ Cache directory {settings.cache_dir} is not writable: {e}")
        return False

    print(f"✅ Cache directory {settings.cache_dir} is writable")
    return True


async def _fetch_rate_limit(api_base: str, timeout: float):
    session = create_session(timeout)
    try:
        async with session.get(f"{api_base.rstrip('/')}/rate_limit") as resp:
            resp.raise_for_status()
            return await resp.json()
    finally:
        await session.close()


def check_api_reachable():
    """Check that the API answers and report the remaining quota."""
    print("\nChecking GitHub API...")

    settings = load_settings()
    try:
        payload = asyncio.run(_fetch_rate_limit(settings.api_base, settings.request_timeout))
    except Exception as e:
        print(f"❌ Failed to reach {settings.api_base}: {e}")
        return False

    core = payload.get("resources", {}).get("core", {})
    remaining = core.get("remaining", 0)
    reset = core.get("reset")
    print(f"✅ API reachable, {remaining} requests remaining")
    if remaining == 0 and reset:
        print(f"⚠️  Rate limited until {format_epoch(reset)}")
    return True


def main():
    """Run all verification checks."""
    print("=" * 60)
    print("Portfolio Sync - Setup Verification")
    print("=" * 60)

    checks = [
        ("Environment Variables", check_environment_variables),
        ("Cache Directory", check_cache_directory),
        ("GitHub API", check_api_reachable),
    ]

    results = {}
    for name, check_func in checks:
        try:
            results[name] = check_func()
        except Exception as e:
            print(f"❌ {name} check failed with exception: {e}")
            results[name] = False

    print("\n" + "=" * 60)
    print("Verification Summary")
    print("=" * 60)

    for name, passed in results.items():
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"{status}: {name}")

    if all(results.values()):
        print("\n✅ All checks passed! Ready to sync.")
        print("\nNext steps:")
        print("  python sync_portfolio.py")
        sys.exit(0)
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        print("\nCommon solutions:")
        print("  - Set PORTFOLIO_USERNAME: export PORTFOLIO_USERNAME=octocat")
        print("  - Point PORTFOLIO_CACHE_DIR at a writable directory")
        sys.exit(1)


if __name__ == "__main__":
    main()
