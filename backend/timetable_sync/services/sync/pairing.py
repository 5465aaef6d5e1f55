"""
Pairing token codec.

A token is the base64 text of compact, key-sorted UTF-8 JSON holding the
bootstrap snapshot a new device needs to join a school's sync session.
Encoding is deterministic; decoding never raises.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from timetable_sync.core.exceptions import ErrorCode, InvalidTokenError
from timetable_sync.schemas.sync import PairingPayload

logger = logging.getLogger(__name__)

TOKEN_VERSION = "v2"
REQUIRED_FIELDS = ("schoolName", "entities")


@dataclass
class PairingResult:
    """Result of decoding a pairing token."""
    success: bool
    payload: Optional[PairingPayload] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "PairingResult":
        return cls(success=False, error_code=ErrorCode.INVALID_TOKEN, error_message=message)

    def unwrap(self) -> PairingPayload:
        if not self.success:
            raise InvalidTokenError(self.error_message or "Invalid pairing token")
        return self.payload


class PairingCodec:
    """Encodes and decodes pairing tokens."""

    @staticmethod
    def encode(payload: PairingPayload) -> str:
        data = payload.model_dump(mode="json", by_alias=True)
        data["v"] = TOKEN_VERSION
        text = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode(token: str) -> PairingResult:
        try:
            raw = base64.b64decode((token or "").strip(), validate=True)
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Pairing token is not well-formed: {e}")
            return PairingResult.failure("Token is not well-formed")

        if not isinstance(data, dict):
            return PairingResult.failure("Token does not hold an object")

        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            logger.warning(f"Pairing token missing fields: {missing}")
            return PairingResult.failure(f"Missing required fields: {', '.join(missing)}")

        try:
            payload = PairingPayload.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Pairing token failed validation: {e.error_count()} errors")
            return PairingResult.failure("Token content is invalid")

        return PairingResult(success=True, payload=payload)
