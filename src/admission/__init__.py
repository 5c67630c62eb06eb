"""Admission control — contributor identity, rate limiting, human verification."""

from .identity import IdentityHash, IdentityResolver, extract_client_address
from .rate_limit import InMemoryCounterStore, RateDecision, RateLimiter, RateLimitRule
from .verification import NullVerifier, TurnstileVerifier, VerificationResult

__all__ = [
    "IdentityHash",
    "IdentityResolver",
    "extract_client_address",
    "InMemoryCounterStore",
    "RateDecision",
    "RateLimiter",
    "RateLimitRule",
    "NullVerifier",
    "TurnstileVerifier",
    "VerificationResult",
]
