"""Token domain schemas - validation results and request/response models"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from ...models import MagicToken

INVALID_TOKEN = "invalid_token"
TOKEN_NOT_FOUND = "token_not_found"
TOKEN_REVOKED = "token_revoked"
TOKEN_EXPIRED = "token_expired"

# Every token failure maps to this message so clients cannot tell them apart
GENERIC_TOKEN_ERROR = "This link is no longer valid."


class TokenValidationResult(BaseModel):
    """Outcome of validating a presented magic token"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    valid: bool
    reason: Optional[str] = None
    claims: Optional[dict[str, Any]] = None
    token_record: Optional[MagicToken] = None
    grace_used: bool = False

    @property
    def user_id(self) -> Optional[str]:
        return self.claims.get("sub") if self.claims else None

    @property
    def prompt_id(self) -> Optional[str]:
        return self.claims.get("prompt_id") if self.claims else None

    @property
    def token_id(self) -> Optional[str]:
        return self.claims.get("jti") if self.claims else None


class ValidateTokenRequest(BaseModel):
    token: Optional[str] = None
    formLoadedAt: Optional[str] = None


class TokenUser(BaseModel):
    name: Optional[str] = None


class ValidateTokenResponse(BaseModel):
    valid: bool
    user: TokenUser
    prompt_id: str
    expiresAt: datetime
    graceUsed: bool = False


class TokenErrorResponse(BaseModel):
    error: str = GENERIC_TOKEN_ERROR
    action: str = "request_new"


class RevokeTokenResponse(BaseModel):
    token_id: str
    status: str
