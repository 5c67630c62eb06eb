"""Human-verification challenge (Cloudflare Turnstile style).

Whether an unreachable or misconfigured verifier lets requests through is an
explicit ``fail_open`` policy, not something buried in the request path. An
explicit negative answer from the verifier always fails.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger()

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
DEFAULT_TIMEOUT = 3.0


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    error_codes: list[str] = field(default_factory=list)
    fail_open_applied: bool = False


class HumanVerifier(Protocol):
    fail_open: bool

    def verify(self, token: Optional[str], remote_address: Optional[str] = None) -> VerificationResult:
        ...


class NullVerifier:
    """Accepts everything. Used when no challenge secret is configured."""

    fail_open = True

    def verify(self, token: Optional[str], remote_address: Optional[str] = None) -> VerificationResult:
        return VerificationResult(passed=True)


class TurnstileVerifier:
    """Verifies challenge tokens against the siteverify endpoint."""

    def __init__(
        self,
        secret_key: str,
        fail_open: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        url: str = SITEVERIFY_URL,
        client: Optional[httpx.Client] = None,
    ):
        self.secret_key = secret_key
        self.fail_open = fail_open
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def _degraded(self, reason: str) -> VerificationResult:
        logger.warning("verification.degraded", reason=reason, fail_open=self.fail_open)
        return VerificationResult(
            passed=self.fail_open,
            error_codes=[reason],
            fail_open_applied=self.fail_open,
        )

    def verify(self, token: Optional[str], remote_address: Optional[str] = None) -> VerificationResult:
        if not self.secret_key:
            return self._degraded("missing-secret")
        if not token or not isinstance(token, str):
            return self._degraded("missing-input-response")

        payload = {"secret": self.secret_key, "response": token}
        if remote_address:
            payload["remoteip"] = remote_address

        try:
            response = self.client.post(self.url, data=payload)
        except httpx.HTTPError as e:
            return self._degraded(f"network-error:{type(e).__name__}")

        if response.status_code >= 500:
            return self._degraded(f"http-{response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return self._degraded("malformed-response")

        if not isinstance(body, dict):
            return self._degraded("malformed-response")

        if body.get("success") is True:
            return VerificationResult(passed=True)

        codes = list(body.get("error-codes") or [])
        logger.info("verification.failed", error_codes=codes)
        return VerificationResult(passed=False, error_codes=codes)

    def close(self) -> None:
        self.client.close()
