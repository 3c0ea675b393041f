#!/usr/bin/env python3
"""
Quick checks so the dashboard API can start. Run from repo root or backend/:
  python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Copy from backend/.env.example and set API_BASE_URL, etc.")
    else:
        print("OK  .env exists")

    # 2) Local store (kv_entries must exist: alembic upgrade head)
    try:
        from sqlalchemy import inspect
        from querychat.db.session import engine
        from querychat.db.tables import ALL_TABLE_NAMES

        missing = set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names())
        if missing:
            errors.append(f"Tables missing: {sorted(missing)}. Run: alembic upgrade head")
            print("FAIL Tables missing:", sorted(missing))
        else:
            print("OK  Database tables (DATABASE_URL)")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 3) Query service reachable
    try:
        import httpx
        from querychat.config import settings

        r = httpx.get(settings.api_base_url, timeout=5.0)
        print(f"OK  Query service at {settings.api_base_url} (HTTP {r.status_code})")
    except Exception as e:
        errors.append(f"Query service: {e}")
        print("FAIL Query service:", e)

    # 4) App import (catches missing deps, bad imports)
    try:
        from querychat.main import app  # noqa: F401
        print("OK  App import (querychat.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        print("\nThen start: uvicorn querychat.main:app --reload --port 8001  (from backend/)")
        return 1

    print("\nAll checks passed. Start with: uvicorn querychat.main:app --reload --port 8001")
    return 0


if __name__ == "__main__":
    sys.exit(main())
