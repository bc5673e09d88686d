import hmac
from typing import Union


class Signature:
    prefix = "sha256="

    def __init__(self, secret: str | None):
        self.secret = secret or ""

    def create(self, payload: Union[str, bytes]) -> str:
        """Create a ``sha256=<hex>`` signature for the given payload."""
        if isinstance(payload, str):
            payload = payload.encode()
        digest = hmac.new(
            self.secret.encode(),
            payload,
            digestmod="sha256",
        ).hexdigest()
        return f"{self.prefix}{digest}"

    def verify(self, payload: Union[str, bytes], signature: str | None) -> bool:
        """Verify that the signature header matches the payload.

        Fails closed: an unset secret or a missing header never verifies.
        """
        if not self.secret or not signature:
            return False
        expected_signature = self.create(payload)
        return hmac.compare_digest(
            expected_signature.encode(), signature.strip().encode()
        )
