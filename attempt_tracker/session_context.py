"""
Per-login session context: the API token and account details of one user.
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

STUDENT_ROLE = "STUDENT"


def validate_token_format(token: Optional[str]) -> bool:
    """A usable token is a JWT: three non-empty, dot separated parts."""
    if not isinstance(token, str) or not token.strip():
        return False
    parts = token.strip().split(".")
    return len(parts) == 3 and all(parts)


def decode_impersonation_chain(token: Optional[str]) -> List[str]:
    """Read the ``impersonationChain`` claim from a JWT payload, without verifying it."""
    if not validate_token_format(token):
        return []
    payload = token.strip().split(".")[1]
    try:
        padded = payload + "=" * (-len(payload) % 4)
        decoded = json.loads(base64.urlsafe_b64decode(padded))
    except (binascii.Error, ValueError):
        return []
    if not isinstance(decoded, dict):
        return []
    chain = decoded.get("impersonationChain") or []
    return [str(item) for item in chain] if isinstance(chain, list) else []


@dataclass
class SessionContext:
    """
    Created when a user logs in and torn down at logout.

    Components that need credentials receive the context explicitly instead
    of reading shared module state.
    """
    token: Optional[str] = None
    account_id: Optional[str] = None
    role: Optional[str] = None
    institution_slug: Optional[str] = None
    impersonation_chain: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.token is not None and not validate_token_format(self.token):
            logger.warning("Invalid token format, discarding stored credentials")
            self.token = None
            self.account_id = None
            self.role = None
        if self.token:
            self.token = self.token.strip()
            self.impersonation_chain = decode_impersonation_chain(self.token)

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    @property
    def is_student(self) -> bool:
        return self.is_authenticated and (self.role or "").upper() == STUDENT_ROLE

    @property
    def tenant(self) -> str:
        return self.institution_slug or ""

    def auth_headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def logout(self) -> None:
        self.token = None
        self.account_id = None
        self.role = None
        self.impersonation_chain = []
