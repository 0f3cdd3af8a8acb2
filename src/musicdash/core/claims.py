"""Extract the subject identifier from bearer tokens.

Only the user id is needed, to decide which cached data to drop when a token
stops working. Signatures are not checked here; a verifying decoder can be
swapped in through :class:`ClaimsDecoder`.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    """The subset of JWT claims musicdash cares about."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    sub: str | None = None
    id: str | None = None
    exp: int | None = None

    @property
    def subject(self) -> str | None:
        return self.sub or self.id


class ClaimsDecoder(Protocol):
    def decode(self, token: str) -> TokenClaims | None: ...


class UnverifiedClaimsDecoder:
    """Read the payload segment of a JWT without verifying it.

    Opaque (non-JWT) tokens and malformed payloads decode to None.
    """

    def decode(self, token: str) -> TokenClaims | None:
        segments = token.split(".")
        if len(segments) != 3 or not segments[1]:
            return None

        payload = segments[1]
        padded = payload + "=" * (-len(payload) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded)
            data = json.loads(raw)
        except (binascii.Error, ValueError):
            logger.debug("Token payload is not base64url-encoded JSON")
            return None

        if not isinstance(data, dict):
            return None

        try:
            return TokenClaims.model_validate(data)
        except ValidationError:
            logger.debug("Token payload has unexpected claim types")
            return None
