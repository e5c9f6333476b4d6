"""
Magic link token codec
Signs and verifies the compact JWT carried in availability form links
"""

import logging
from datetime import datetime
from typing import Any, Optional

from jose import JWTError, jwt

from ... import config
from ...timeutils import to_epoch

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("jti", "sub", "prompt_id", "exp")


class TokenDecodeError(Exception):
    """Token could not be verified (signature, structure, audience or issuer)"""


class SigningContext:
    """
    Key material and fixed claims used to sign magic tokens.
    Built once at process start and passed to whoever issues or validates tokens.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: str = "availability-form",
        issuer: str = "gamenight.app",
    ):
        if not secret:
            raise ValueError("Signing secret is required")
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer

    @classmethod
    def from_config(cls) -> "SigningContext":
        return cls(
            secret=config.MAGIC_TOKEN_SECRET,
            algorithm=config.MAGIC_TOKEN_ALGORITHM,
            audience=config.MAGIC_TOKEN_AUDIENCE,
            issuer=config.MAGIC_TOKEN_ISSUER,
        )


class TokenCodec:
    def __init__(self, signing: SigningContext):
        self.signing = signing

    def encode(
        self,
        *,
        token_id: str,
        subject: str,
        name: Optional[str],
        prompt_id: str,
        expires_at: datetime,
        issued_at: datetime,
    ) -> str:
        claims = {
            "jti": token_id,
            "sub": subject,
            "name": name,
            "prompt_id": prompt_id,
            "aud": self.signing.audience,
            "iss": self.signing.issuer,
            "iat": to_epoch(issued_at),
            "exp": to_epoch(expires_at),
        }
        return jwt.encode(claims, self.signing.secret, algorithm=self.signing.algorithm)

    def decode(self, token: Any) -> dict[str, Any]:
        """
        Verify signature, audience and issuer and return the claims.
        Expiry is NOT enforced here; callers apply their own expiry and grace rules.

        Raises:
            TokenDecodeError: for any structural or cryptographic failure
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenDecodeError("malformed token")

        try:
            claims = jwt.decode(
                token,
                self.signing.secret,
                algorithms=[self.signing.algorithm],
                audience=self.signing.audience,
                issuer=self.signing.issuer,
                options={"verify_exp": False},
            )
        except (JWTError, ValueError, TypeError) as e:
            raise TokenDecodeError(type(e).__name__) from e

        missing = [claim for claim in REQUIRED_CLAIMS if claims.get(claim) in (None, "")]
        if missing:
            raise TokenDecodeError(f"missing claims: {', '.join(missing)}")

        try:
            int(claims["exp"])
        except (TypeError, ValueError) as e:
            raise TokenDecodeError("non-numeric exp") from e

        return claims

    @staticmethod
    def peek_token_id(token: Any) -> Optional[str]:
        """Read the jti claim without verification (analytics only)"""
        if not isinstance(token, str):
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except (JWTError, ValueError, TypeError):
            return None
        token_id = claims.get("jti") if isinstance(claims, dict) else None
        return str(token_id)[:128] if token_id else None
