"""
User Data Value Object

Architectural Intent:
- Encodes the caller's environment map into the opaque launch payload
- Wire format is base64(JSON(env)); whatever runs inside the instance
  decodes it, so the encoding must stay byte-stable

Design Decisions:
- JSON is compact, key-sorted UTF-8 with the HTML-safe escaping Go's
  encoding/json applies: <, >, & and the U+2028/U+2029 line separators are
  written as \\u escapes, so payloads match those produced by Go tooling
  byte for byte
"""

import base64
import binascii
import json
from dataclasses import dataclass

# Only ever occur inside JSON string literals, so a plain replace is safe.
_HTML_SAFE_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _marshal(env: dict[str, str]) -> str:
    payload = json.dumps(env, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in _HTML_SAFE_ESCAPES:
        payload = payload.replace(raw, escaped)
    return payload


@dataclass(frozen=True)
class UserData:
    encoded: str

    @classmethod
    def from_env(cls, env: dict[str, str]) -> "UserData":
        return cls(base64.b64encode(_marshal(env).encode("utf-8")).decode("ascii"))

    def decode(self) -> dict[str, str]:
        try:
            raw = base64.b64decode(self.encoded, validate=True)
        except binascii.Error as e:
            raise ValueError(f"User data is not valid base64: {e}") from e
        return json.loads(raw.decode("utf-8"))

    def __str__(self) -> str:
        return self.encoded
