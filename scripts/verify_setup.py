"""Verify that the setup is correct before running an audit."""
import asyncio
import os
import sys
from dotenv import load_dotenv
from repoaudit.config import TOKEN_VARIABLES, Settings, load_default_org
from repoaudit.domain.errors import AuthError, ConfigError
from repoaudit.infrastructure.github_client import GitHubRestClient

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def check_environment_variables():
    """Check required environment variables."""
    print("Checking environment variables...")
    
    optional_vars = [
        "REPOAUDIT_CACHE_DIR", "REPOAUDIT_MAX_CONCURRENCY",
        "REPOAUDIT_SEARCH_CEILING", "REPOAUDIT_MAX_RETRIES", "REPOAUDIT_LOG_LEVEL"
    ]
    
    try:
        settings = Settings.from_env()
        settings.require_token()
    except ConfigError as e:
        print(f"❌ {e}")
        return False
    
    print("✅ Required environment variables set")
    
    for var in optional_vars:
        if os.getenv(var):
            print(f"   {var}: {os.getenv(var)}")
    
    return True


def check_cache_directory():
    """Check that the cache directory is writable."""
    print("\nChecking cache directory...")
    
    cache_dir = Settings.from_env().cache_dir
    try:
        os.makedirs(cache_dir, exist_ok=True)
    except OSError as e:
        print(f"❌ Cannot create cache directory {cache_dir}: {e}")
        return False
    
    if not os.access(cache_dir, os.W_OK):
        print(f"❌ Cache directory {cache_dir} is not writable")
        return False
    
    print(f"✅ Cache directory {cache_dir} is writable")
    return True


def check_default_org():
    """Report the default organization, if configured."""
    print("\nChecking default organization...")
    
    try:
        org = load_default_org()
    except ConfigError as e:
        print(f"❌ {e}")
        return False
    
    if org:
        print(f"✅ Default organization: {org}")
    else:
        print("⚠️  No default organization; pass --org with --query to scope searches")
    return True


async def _probe_token(token: str) -> str:
    client = GitHubRestClient(token)
    try:
        return await client.verify_token()
    finally:
        await client.close()


def check_github_token():
    """Verify GitHub token is accepted by the API."""
    print("\nChecking GitHub token...")
    
    token = Settings.from_env().token
    if not token:
        print(f"❌ {TOKEN_VARIABLES[0]} not set")
        return False
    
    try:
        login = asyncio.run(_probe_token(token))
    except AuthError as e:
        print(f"❌ {e}")
        return False
    
    if login:
        print(f"✅ Authenticated as {login}")
    else:
        print("⚠️  Could not reach GitHub to validate the token")
    return True


def main():
    """Run all verification checks."""
    print("=" * 60)
    print("Repository Auditor - Setup Verification")
    print("=" * 60)
    
    checks = [
        ("Environment Variables", check_environment_variables),
        ("Cache Directory", check_cache_directory),
        ("Default Organization", check_default_org),
        ("GitHub Token", check_github_token),
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
    
    all_passed = all(results.values())
    
    if all_passed:
        print("\n✅ All checks passed! Ready to run an audit.")
        print("\nNext steps:")
        print("  python audit_repos.py --package left-pad")
        sys.exit(0)
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        print("\nCommon solutions:")
        print("  - Set GITHUB_TOKEN: export GITHUB_TOKEN=your_token")
        print("  - Point REPOAUDIT_CACHE_DIR at a writable directory")
        sys.exit(1)


if __name__ == "__main__":
    main()
