#!/usr/bin/env python3
"""Local stand-in for Supabase's ``/auth/v1/user`` endpoint.

Point ``IH_SUPABASE_URL`` at it and send ``Authorization: Bearer <role>-token``.
"""

from __future__ import annotations

import argparse
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

# token -> (auth user id, app_metadata)
TOKENS: dict[str, tuple[str, dict[str, object]]] = {
    "admin-token": ("11111111-1111-1111-1111-111111111111", {"role": "admin"}),
    "employer-token": ("22222222-2222-2222-2222-222222222222", {"role": "employer"}),
    "student-token": ("33333333-3333-3333-3333-333333333333", {"role": "student"}),
    # Elevated role claimed only in user_metadata must not grant admin.
    "spoofed-admin-token": ("44444444-4444-4444-4444-444444444444", {}),
}


def user_payload_for_token(token: str) -> dict[str, object] | None:
    entry = TOKENS.get(token)
    if entry is None:
        return None
    user_id, app_metadata = entry
    user_metadata: dict[str, object] = {"role": "admin"} if token == "spoofed-admin-token" else {}
    return {"id": user_id, "app_metadata": app_metadata, "user_metadata": user_metadata}


class MockSupabaseHandler(BaseHTTPRequestHandler):
    server_version = "MockSupabase/1.0"

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        if self.path == "/healthz":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return

        if self.path != "/auth/v1/user":
            self._write_json(HTTPStatus.NOT_FOUND, {"detail": "not found"})
            return

        if not self.headers.get("apikey"):
            self._write_json(HTTPStatus.UNAUTHORIZED, {"detail": "missing apikey"})
            return

        authorization = self.headers.get("Authorization", "")
        if not authorization.lower().startswith("bearer "):
            self._write_json(HTTPStatus.UNAUTHORIZED, {"detail": "missing bearer token"})
            return

        user = user_payload_for_token(authorization.split(" ", maxsplit=1)[1].strip())
        if user is None:
            self._write_json(HTTPStatus.UNAUTHORIZED, {"detail": "invalid token"})
            return

        self._write_json(HTTPStatus.OK, user)

    def log_message(self, _: str, *args: object) -> None:
        if args:
            print("mock-supabase:", *args, flush=True)

    def _write_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock Supabase auth /auth/v1/user endpoint.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), MockSupabaseHandler)
    print(f"mock-supabase listening on http://{args.host}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
