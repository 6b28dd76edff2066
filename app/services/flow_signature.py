"""
Flow request signing.

Flow authenticates every call with an HMAC-SHA256 over the request
parameters: keys sorted, each "key" + "value" concatenated with no
separator, digest in lowercase hex, sent as the "s" parameter.
"""

import hmac
import hashlib
from typing import Any, Dict, Mapping

from app.errors import ConfigurationError

SIGNATURE_FIELD = "s"


def wire_value(value: Any) -> str:
    """Render a parameter exactly as it goes out on the wire."""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class FlowSigner:
    """Signs Flow parameter sets with the merchant secret key."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ConfigurationError("FLOW_SECRET_KEY is not configured")
        self._secret = secret_key.encode("utf-8")

    def canonical_string(self, params: Mapping[str, Any]) -> str:
        return "".join(
            f"{key}{wire_value(params[key])}"
            for key in sorted(params)
            if key != SIGNATURE_FIELD
        )

    def sign(self, params: Mapping[str, Any]) -> str:
        """
        Compute the signature for a parameter set.

        Pure function of the (key, value) pairs: input ordering does not
        matter and any existing "s" entry is ignored.
        """
        message = self.canonical_string(params).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed(self, params: Mapping[str, Any]) -> Dict[str, str]:
        """Return wire-ready params with the signature appended last."""
        wire = {
            key: wire_value(value)
            for key, value in params.items()
            if key != SIGNATURE_FIELD
        }
        wire[SIGNATURE_FIELD] = self.sign(wire)
        return wire
