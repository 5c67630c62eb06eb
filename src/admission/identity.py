"""Contributor identity derived from the network address.

The raw address is normalized, then hashed with keyed BLAKE2b-256 using a
versioned secret salt. Only the hash and the salt version are ever stored;
the address itself is never persisted or logged.
"""

import hashlib
import ipaddress
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from predictions.errors import ConfigurationError, ValidationError

logger = structlog.get_logger()

HASH_DIGEST_SIZE = 32  # 64 hex chars


@dataclass(frozen=True)
class IdentityHash:
    value: str
    salt_version: str

    @property
    def prefix(self) -> str:
        """Short prefix safe for log correlation."""
        return self.value[:8]


def normalize_address(raw_address: str) -> str:
    """Canonical text form of an IPv4/IPv6 address.

    Equivalent spellings (``::1`` vs ``0:0::1``, IPv4-mapped IPv6) map to one
    string so they hash identically.
    """
    if not isinstance(raw_address, str) or not raw_address.strip():
        raise ValidationError("Could not determine client address", field="address")
    try:
        addr = ipaddress.ip_address(raw_address.strip())
    except ValueError:
        raise ValidationError("Could not determine client address", field="address")
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return addr.compressed


def extract_client_address(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    trust_proxy_headers: bool = False,
) -> Optional[str]:
    """Client address for identity resolution.

    Without ``trust_proxy_headers`` forwarding headers are ignored and the
    socket peer is used. Behind a trusted proxy the
    precedence is CF-Connecting-IP, first X-Forwarded-For entry, X-Real-IP,
    then the peer.
    """
    if not trust_proxy_headers:
        return peer
    lowered = {k.lower(): v for k, v in headers.items()}
    cf = lowered.get("cf-connecting-ip")
    if cf and cf.strip():
        return cf.strip()
    forwarded = lowered.get("x-forwarded-for")
    if forwarded and forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    real_ip = lowered.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer


class IdentityResolver:
    """Maps raw addresses to salted identity hashes.

    Args:
        salts: Salt secrets keyed by version label (e.g. ``{"v1": "..."}``).
        current_version: Version used for new identities.
    """

    def __init__(self, salts: Mapping[str, str], current_version: str):
        if not salts:
            raise ConfigurationError("No identity salts configured (set SALT_V1)")
        if current_version not in salts:
            raise ConfigurationError(f"Salt version {current_version!r} is not configured")
        empty = [v for v, s in salts.items() if not s or not s.strip()]
        if empty:
            raise ConfigurationError(f"Identity salt is empty for version(s): {', '.join(empty)}")

        # BLAKE2b keys are capped at 64 bytes, so derive a fixed-size key per salt.
        self._keys = {
            version: hashlib.blake2b(secret.encode(), digest_size=32).digest()
            for version, secret in salts.items()
        }
        self.current_version = current_version

    @property
    def versions(self) -> list[str]:
        return sorted(self._keys)

    def resolve(self, raw_address: str, salt_version: Optional[str] = None) -> IdentityHash:
        """Deterministic identity for ``raw_address`` under ``salt_version``."""
        version = salt_version or self.current_version
        key = self._keys.get(version)
        if key is None:
            raise ConfigurationError(f"Salt version {version!r} is not configured")

        normalized = normalize_address(raw_address)
        digest = hashlib.blake2b(
            normalized.encode(), key=key, digest_size=HASH_DIGEST_SIZE
        ).hexdigest()
        return IdentityHash(value=digest, salt_version=version)

    def resolve_all(self, raw_address: str) -> list[IdentityHash]:
        """The address under every configured salt version, current first."""
        ordered = [self.current_version] + [v for v in self.versions if v != self.current_version]
        return [self.resolve(raw_address, v) for v in ordered]
