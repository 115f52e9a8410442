"""
NutriLens Backend: Google ID Token Verification
===============================================

What:  Validates a Google ID token sent by a native client and extracts the
       identity claims NutriLens needs (sub, email, name).
How:   Asks Google's tokeninfo endpoint to validate the token (signature,
       expiry) over httpx, then checks the audience against GOOGLE_CLIENT_ID.
Who:   UserService.google_sign_in.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from nutrilens.config import settings
from nutrilens.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoogleIdentity:
    sub: str
    email: str
    email_verified: bool
    name: str


class GoogleTokenVerifier:
    """Verifies Google ID tokens against the tokeninfo endpoint."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        tokeninfo_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.google_client_id
        self.tokeninfo_url = tokeninfo_url or settings.google_tokeninfo_url
        self.timeout = timeout or settings.google_timeout_seconds
        self._transport = transport

    async def verify(self, id_token: str) -> GoogleIdentity:
        """
        Raises:
            AuthenticationError: Google rejected the token, the audience does
                                 not match, or Google could not be reached
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.tokeninfo_url, params={"id_token": id_token})
        except httpx.HTTPError as exc:
            logger.error("Google token verification request failed: %s", exc)
            raise AuthenticationError("Failed to verify Google token") from exc

        if response.status_code != 200:
            logger.warning(
                "Google tokeninfo rejected token: HTTP %d %s",
                response.status_code, response.text[:200],
            )
            raise AuthenticationError("Failed to verify Google token")

        data = response.json()
        audience = data.get("aud")
        if not self.client_id or audience != self.client_id:
            logger.error("Token audience mismatch: %s vs %s", audience, self.client_id)
            raise AuthenticationError("Failed to verify Google token")

        if not data.get("sub") or not data.get("email"):
            raise AuthenticationError("Google token is missing identity claims")

        return GoogleIdentity(
            sub=data["sub"],
            email=data["email"].strip().lower(),
            # tokeninfo returns booleans as strings
            email_verified=str(data.get("email_verified", "")).lower() == "true",
            name=data.get("name") or "",
        )


google_token_verifier = GoogleTokenVerifier()
