from __future__ import annotations

import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "bootstrap_admin.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_bootstrap_script_upserts_admin_by_email() -> None:
    output = _run_script("--email", "admin@internhub.test", "--name", "Ops", "--super-admin")

    assert "insert into users (email, name, role, is_verified, is_super_admin)" in output
    assert "values ('admin@internhub.test', 'Ops', 'admin', true, true)" in output
    assert "on conflict (email) do update" in output
    assert "where email = 'admin@internhub.test';" in output


def test_bootstrap_script_targets_supabase_user_id() -> None:
    user_id = "00000000-0000-0000-0000-000000000123"
    output = _run_script("--email", "o'brien@internhub.test", "--supabase-user-id", user_id)

    assert "values ('o''brien@internhub.test', null, 'admin', true, false)" in output
    assert f"where id = '{user_id}'::uuid;" in output
    assert "jsonb_build_object('role', 'admin')" in output
