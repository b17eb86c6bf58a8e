import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from disclosure_api.core.auth import Principal, PrincipalType
from disclosure_api.core.config import Settings, get_settings

ROLE_SCOPES: dict[PrincipalType, set[str]] = {
    PrincipalType.WORKER: {"jobs:read", "jobs:write"},
    PrincipalType.REVIEWER: {"jobs:read", "review:write"},
    PrincipalType.ADMIN: {"jobs:read", "jobs:write", "review:write"},
}


async def get_principal(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> Principal:
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"requests require {settings.api_key_header}",
        )

    key_hash = _hash_token(x_api_key)
    matched = next(
        (token for raw, token in settings.api_tokens.items() if hmac.compare_digest(_hash_token(raw), key_hash)),
        None,
    )
    if matched is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")

    try:
        principal_type = PrincipalType(matched.role)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"unknown role {matched.role!r}") from exc

    return Principal(
        principal_type=principal_type,
        subject=matched.subject,
        scopes=set(ROLE_SCOPES[principal_type]),
    )


def _hash_token(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
