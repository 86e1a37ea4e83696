from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from internhub.core.auth import Principal, UserRole, scopes_for_role
from internhub.core.config import Settings, get_settings

KNOWN_ROLES = {role.value for role in UserRole}
# Highest privilege first when a token carries several roles.
ROLE_PRECEDENCE = (UserRole.ADMIN.value, UserRole.EMPLOYER.value, UserRole.STUDENT.value)


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"reason": "unauthenticated", "message": "bearer token required"},
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"reason": "unauthenticated", "message": "empty bearer token"},
        )

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"reason": "unavailable", "message": "Supabase auth is not configured"},
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"reason": "unauthenticated", "message": "invalid bearer token"},
        )

    role = _resolve_human_role(user)
    return Principal(subject=user_id, role=role, scopes=scopes_for_role(role))


async def get_admin_principal(principal: Principal = Depends(get_human_principal)) -> Principal:
    try:
        principal.require_scopes({"moderation:read", "moderation:write"})
    except PermissionError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"reason": "missing_scope", "message": str(exc)},
        ) from exc
    return principal


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"reason": "unavailable", "message": "Supabase auth verification unavailable"},
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"reason": "unauthenticated", "message": "invalid bearer token"},
        )
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"reason": "unavailable", "message": "Supabase auth verification failed"},
        )

    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # user_metadata is writable by the user, so only app_metadata grants a role.
    app_metadata = user.get("app_metadata")
    if not isinstance(app_metadata, dict):
        return UserRole.STUDENT.value

    role = app_metadata.get("role")
    if isinstance(role, str) and role in KNOWN_ROLES:
        return role

    roles = app_metadata.get("roles")
    if isinstance(roles, list):
        granted = {item for item in roles if isinstance(item, str)}
        for candidate in ROLE_PRECEDENCE:
            if candidate in granted:
                return candidate

    return UserRole.STUDENT.value
