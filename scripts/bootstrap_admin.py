#!/usr/bin/env python3
"""Emit deterministic SQL that promotes a Supabase user to an active job board admin."""

from __future__ import annotations

import argparse

TOGGLE_KEYS = ("faculty_can_post_jobs", "rep_can_post_jobs")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _nullable(value: str | None) -> str:
    return _quote_sql(value) if value else "null"


def render_sql(
    *,
    user_id: str,
    email: str | None,
    first_name: str | None,
    last_name: str | None,
    seed_toggles: bool = True,
) -> str:
    user_value = _quote_sql(user_id)
    statements = [
        "-- Campus job board admin bootstrap SQL",
        "-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).",
        "",
        "insert into user_roles (user_id, email, role, is_active, first_name, last_name)",
        f"values ({user_value}::uuid, {_nullable(email)}, 'admin', true, {_nullable(first_name)}, {_nullable(last_name)})",
        "on conflict (user_id) do update",
        "set",
        "  role = 'admin',",
        "  is_active = true,",
        "  deleted_at = null,",
        "  email = coalesce(excluded.email, user_roles.email);",
        "",
        "insert into user_status_audit (user_id, action, changed_by_admin_email)",
        f"values ({user_value}::uuid, 'role:admin', 'bootstrap');",
    ]

    if seed_toggles:
        values = ", ".join(f"({_quote_sql(key)}, true)" for key in TOGGLE_KEYS)
        statements.extend(
            [
                "",
                "insert into app_settings (setting_key, setting_value)",
                f"values {values}",
                "on conflict (setting_key) do nothing;",
            ]
        )

    return "\n".join(statements) + "\n"


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap a job board admin.")
    parser.add_argument("--user-id", required=True, help="Supabase auth.users id (UUID)")
    parser.add_argument("--email", help="Email stored on the user_roles row")
    parser.add_argument("--first-name")
    parser.add_argument("--last-name")
    parser.add_argument(
        "--no-seed-toggles",
        action="store_true",
        help="Skip seeding the posting toggles in app_settings",
    )
    args = parser.parse_args()

    print(
        render_sql(
            user_id=args.user_id,
            email=args.email,
            first_name=args.first_name,
            last_name=args.last_name,
            seed_toggles=not args.no_seed_toggles,
        )
    )


if __name__ == "__main__":
    main()
