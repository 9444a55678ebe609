#!/usr/bin/env python3
"""
Database Reset Script
Drops and recreates every Shadow Pool table at the configured database URL.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from shadowpool.config import get_settings
from shadowpool.storage.database import DatabaseManager


def reset_database():
    """Reset database to an empty schema."""
    settings = get_settings()
    print(f"🔄 Resetting database at {settings.database_url}...")

    manager = DatabaseManager(settings.database_url)

    print("  ⚠️  Dropping all tables...")
    manager.drop_tables()

    print("  ✓ Creating tables...")
    manager.create_tables()

    print("✅ Database reset complete")


if __name__ == "__main__":
    reset_database()
