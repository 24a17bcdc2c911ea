"""Query and display statistics about the fetch cache."""
import sys
from dotenv import load_dotenv
from repoaudit.config import Settings
from repoaudit.infrastructure.file_cache import FileCacheStore

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def print_section(title: str):
    """Print a section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def display_statistics():
    """Display entry counts and size of the on-disk cache."""
    settings = Settings.from_env()
    cache = FileCacheStore(settings.cache_dir)
    stats = cache.stats()
    
    print_section(f"Cache Statistics ({cache.cache_dir})")
    total = stats["found"] + stats["not_found"]
    print(f"Total entries: {total:,}")
    
    print(f"\n{'Status':<20} {'Count':>15} {'Percentage':>15}")
    print("-" * 60)
    for status in ("found", "not_found", "corrupt"):
        count = stats[status]
        percentage = (count / total * 100) if total > 0 else 0
        print(f"{status:<20} {count:>15,} {percentage:>14.1f}%")
    
    print(f"\nCached content: {stats['bytes']:,} bytes")
    
    print("\n" + "=" * 60)
    print("Query completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    try:
        display_statistics()
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
