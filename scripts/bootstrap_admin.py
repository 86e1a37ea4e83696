#!/usr/bin/env python3
"""Emit deterministic SQL that grants the admin role to an existing account."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, email: str, name: str | None, super_admin: bool, supabase_user_id: str | None) -> str:
    email_value = _quote_sql(email)
    name_value = _quote_sql(name) if name else "null"
    super_admin_value = "true" if super_admin else "false"

    if supabase_user_id:
        auth_where = f"id = {_quote_sql(supabase_user_id)}::uuid"
    else:
        auth_where = f"email = {email_value}"

    return f"""-- Admin bootstrap SQL
-- Run this in a privileged Postgres session (Supabase SQL editor or psql).

insert into users (email, name, role, is_verified, is_super_admin)
values ({email_value}, {name_value}, 'admin', true, {super_admin_value})
on conflict (email) do update
set role = 'admin',
    is_verified = true,
    is_suspended = false,
    is_super_admin = users.is_super_admin or excluded.is_super_admin,
    name = coalesce(excluded.name, users.name);

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', 'admin')
where {auth_where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to grant the admin role to an account.")
    parser.add_argument("--email", required=True, help="Account email (users.email)")
    parser.add_argument("--name", help="Display name to store when the account is created")
    parser.add_argument("--super-admin", action="store_true", help="Mark the account as super admin")
    parser.add_argument(
        "--supabase-user-id",
        help="Supabase auth.users id (UUID); defaults to matching by email",
    )
    args = parser.parse_args()

    print(
        render_sql(
            email=args.email,
            name=args.name,
            super_admin=args.super_admin,
            supabase_user_id=args.supabase_user_id,
        )
    )


if __name__ == "__main__":
    main()
