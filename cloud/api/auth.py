from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

ROLE_READER = "reader"
ROLE_WRITER = "writer"

VALID_ROLES: set[str] = {ROLE_READER, ROLE_WRITER}


def _normalise_roles(roles: str | set[str] | list[str] | tuple[str, ...] | None) -> set[str]:
    if not roles:
        return set()
    chunks = roles.split(",") if isinstance(roles, str) else roles
    normalised: set[str] = set()
    for chunk in chunks:
        role = str(chunk).strip().lower()
        if not role:
            continue
        normalised.add(role)
    return normalised


def parse_token_config(raw: str | None) -> dict[str, set[str]]:
    """Parse ``token[:role+role],token2`` into a token to roles mapping.

    Tokens without explicit roles are granted both reader and writer.
    """

    tokens: dict[str, set[str]] = {}
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        token, _, roles = chunk.partition(":")
        granted = _normalise_roles(roles.replace("+", ",")) or set(VALID_ROLES)
        invalid = sorted(role for role in granted if role not in VALID_ROLES)
        if invalid:
            raise ValueError(f"invalid roles for token: {', '.join(invalid)}")
        tokens[token.strip()] = granted
    return tokens


@dataclass(slots=True)
class Principal:
    token_hint: str
    roles: set[str]

    def has_any(self, *required: str) -> bool:
        if not required:
            return True
        required_set = {role.lower() for role in required}
        return any(role in self.roles for role in required_set)

    def require(self, *required: str) -> None:
        if self.has_any(*required):
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "forbidden",
                "reason": "insufficient_role",
                "required": sorted({role.lower() for role in required}),
                "granted": sorted(self.roles),
            },
        )


def _unauthorized(reason: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "unauthorized", "reason": reason},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def principal_dependency(
    request: Request,
    authorization: str | None = Header(None),
) -> Principal:
    if not authorization:
        raise _unauthorized("missing_token")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("invalid_scheme")
    tokens: dict[str, set[str]] = request.app.state.tokens
    roles = tokens.get(token)
    if roles is None:
        raise _unauthorized("invalid_token")
    return Principal(token_hint=f"{token[:8]}...", roles=set(roles))


__all__ = [
    "Principal",
    "ROLE_READER",
    "ROLE_WRITER",
    "VALID_ROLES",
    "parse_token_config",
    "principal_dependency",
]
