#!/usr/bin/env python3
"""
Print the SQL for the bot's key-value table and check that Supabase can see it.

Supabase's REST API cannot run DDL, so the statement has to be pasted into the
dashboard SQL editor once per project.
"""

import sys

import requests

from settings import load_settings


def table_sql(table: str) -> str:
    return f"""
    CREATE TABLE IF NOT EXISTS {table} (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        expires_at TIMESTAMPTZ NULL
    );

    CREATE INDEX IF NOT EXISTS idx_{table}_expires_at ON {table}(expires_at);
    """


def check_table(url: str, service_role_key: str, table: str) -> int:
    response = requests.get(
        f"{url.rstrip('/')}/rest/v1/{table}",
        params={"select": "key", "limit": 1},
        headers={
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        },
        timeout=10,
    )
    return response.status_code


def main() -> int:
    settings = load_settings()

    print("=" * 80)
    print(f"KEY-VALUE TABLE: {settings.kv_table}")
    print("=" * 80)
    print("\nRun this in the Supabase dashboard SQL editor:\n")
    print("-" * 80)
    print(table_sql(settings.kv_table).strip())
    print("-" * 80)

    if not (settings.supabase_url and settings.supabase_service_role_key):
        print("\nSUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set; the bot will use in-memory storage.")
        return 0

    try:
        status = check_table(settings.supabase_url, settings.supabase_service_role_key, settings.kv_table)
    except requests.RequestException as exc:
        print(f"\n❌ Could not reach Supabase: {exc}")
        return 1
    if status == 200:
        print(f"\n✓ Table {settings.kv_table} is reachable")
        return 0
    print(f"\n⚠️  Supabase answered {status}; create the table and run this again.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
