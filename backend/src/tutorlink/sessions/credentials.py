"""Verification of the signed credentials presented on join."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import jwt

from ..errors import Unauthenticated

# Tokens issued by the account service carry the user id in ``id``; tokens
# minted by this service use the registered ``sub`` claim.
IDENTITY_CLAIMS = ("sub", "id")


@dataclass(slots=True)
class CredentialVerifier:
    """Validate an HMAC-signed JWT and resolve the identity it carries."""

    secret_key: str
    algorithm: str = "HS256"

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise Unauthenticated("Could not validate credentials") from exc

    def resolve_identity(self, credential: Any) -> str:
        """Return the identity bound to *credential* or raise ``Unauthenticated``."""

        if not isinstance(credential, str) or not credential.strip():
            raise Unauthenticated("Not authorized, no token")
        payload = self.decode(credential.strip())
        for claim in IDENTITY_CLAIMS:
            value = payload.get(claim)
            if value is not None and str(value).strip():
                return str(value).strip()
        raise Unauthenticated("Could not validate credentials")


__all__ = ["CredentialVerifier", "IDENTITY_CLAIMS"]
