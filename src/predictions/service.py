"""Prediction engine — submission protocol and consensus reads.

Write path: identity → rate limit → validation → human check → store
transaction → cache invalidation. Read path: stats cache → weighted median
(on a miss only) → status classifier.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

import structlog

from admission.identity import IdentityHash, IdentityResolver
from admission.rate_limit import RateDecision, RateLimiter, RateLimitRule
from admission.verification import HumanVerifier, NullVerifier, TurnstileVerifier
from cli.config_models import ConsensusConfig, EngineConfig
from observability import metrics
from shared_types import Comparison, OperationClass

from .cache import AggregatedStats, StatsCache
from .errors import RateLimitError, VerificationError
from .median import compute_median
from .status import StatusResult, classify
from .store import PredictionStore
from .validation import PredictionInput, validate_recovery_token
from .weights import calculate_weight

logger = structlog.get_logger()


@dataclass(frozen=True)
class SubmitResult:
    recovery_token: str
    predicted_date: date
    weight: float
    consensus_median: date
    delta_days: int
    comparison: Comparison
    rate: Optional[RateDecision] = None

    def to_dict(self) -> dict:
        return {
            "recovery_token": self.recovery_token,
            "predicted_date": self.predicted_date.isoformat(),
            "consensus_median": self.consensus_median.isoformat(),
            "delta_days": self.delta_days,
            "comparison": self.comparison.value,
        }


@dataclass(frozen=True)
class UpdateResult:
    predicted_date: date
    previous_date: date
    consensus_median: date
    delta_days: int
    comparison: Comparison
    rate: Optional[RateDecision] = None

    def to_dict(self) -> dict:
        return {
            "predicted_date": self.predicted_date.isoformat(),
            "previous_date": self.previous_date.isoformat(),
            "consensus_median": self.consensus_median.isoformat(),
            "delta_days": self.delta_days,
            "comparison": self.comparison.value,
        }


@dataclass(frozen=True)
class StatsRead:
    stats: AggregatedStats
    cache_hit: bool
    rate: Optional[RateDecision] = None


@dataclass(frozen=True)
class StatusRead:
    status: StatusResult
    cache_hit: bool
    rate: Optional[RateDecision] = None


def compare_to_median(predicted: date, median: date) -> tuple[int, Comparison]:
    """Signed day delta of a guess against the consensus, and its direction."""
    delta = (predicted - median).days
    if delta == 0:
        return delta, Comparison.ALIGNED
    if delta > 0:
        return delta, Comparison.PESSIMISTIC
    return delta, Comparison.OPTIMISTIC


class PredictionService:
    """Engine facade used by the HTTP routes and the CLI."""

    def __init__(
        self,
        store: PredictionStore,
        resolver: IdentityResolver,
        limiter: Optional[RateLimiter] = None,
        verifier: Optional[HumanVerifier] = None,
        engine: Optional[EngineConfig] = None,
        cache_ttl: float = 300.0,
        cache_wait_timeout: float = 10.0,
    ):
        self.store = store
        self.resolver = resolver
        self.limiter = limiter
        self.verifier = verifier or NullVerifier()
        self.engine = engine or EngineConfig()
        self.cache = StatsCache(self._compute_stats, ttl=cache_ttl, wait_timeout=cache_wait_timeout)

    @classmethod
    def from_config(cls, config: ConsensusConfig) -> "PredictionService":
        """Build the full engine. Raises ConfigurationError on a bad salt setup."""
        store = PredictionStore(
            config.store.db_path,
            busy_timeout=config.store.busy_timeout,
            retry_attempts=config.store.retry_attempts,
            retry_min_wait=config.store.retry_min_wait,
            retry_max_wait=config.store.retry_max_wait,
        )
        resolver = IdentityResolver(config.identity.salts, config.identity.current_version)

        limiter = None
        if config.rate_limits.enabled:
            rules = {
                op: RateLimitRule(limit=r.limit, window_seconds=r.window_seconds)
                for op, r in config.rate_limits.rules().items()
            }
            limiter = RateLimiter(rules, fail_open=config.rate_limits.fail_open)

        verifier = None
        if config.verification.enabled:
            verifier = TurnstileVerifier(
                config.verification.secret_key or "",
                fail_open=config.verification.fail_open,
                timeout=config.verification.timeout,
            )

        return cls(
            store,
            resolver,
            limiter=limiter,
            verifier=verifier,
            engine=config.engine,
            cache_ttl=config.cache.ttl_seconds,
            cache_wait_timeout=config.cache.wait_timeout,
        )

    # --- helpers ---

    def weight_for(self, predicted_date: date) -> float:
        return calculate_weight(
            predicted_date,
            self.engine.reference_date,
            near_years=self.engine.near_threshold_years,
            far_years=self.engine.far_threshold_years,
        )

    def _admit(
        self, raw_address: str, operation: OperationClass
    ) -> tuple[IdentityHash, Optional[RateDecision]]:
        identity = self.resolver.resolve(raw_address)
        if self.limiter is None:
            return identity, None
        decision = self.limiter.check(identity.value, operation)
        if not decision.allowed:
            raise RateLimitError(decision.retry_after, limit=decision.limit)
        return identity, decision

    def _older_hashes(self, raw_address: str, identity: IdentityHash) -> list[str]:
        """The contributor's hashes under every other configured salt version."""
        return [
            h.value
            for h in self.resolver.resolve_all(raw_address)
            if h.salt_version != identity.salt_version
        ]

    def _verify(self, token: Optional[str], raw_address: str) -> None:
        result = self.verifier.verify(token, raw_address)
        if not result.passed:
            logger.warning("verification.rejected", error_codes=result.error_codes)
            raise VerificationError()

    def _parse(self, predicted_date, **kwargs) -> PredictionInput:
        return PredictionInput.parse(
            predicted_date,
            min_date=self.engine.min_date,
            max_date=self.engine.max_date,
            **kwargs,
        )

    def _compare(self, predicted: date) -> tuple[date, int, Comparison]:
        # Runs after the write's invalidation, so the consensus includes it.
        median = self.cache.get().median
        delta, comparison = compare_to_median(predicted, median)
        return median, delta, comparison

    # --- writes ---

    def submit(
        self,
        raw_address: str,
        predicted_date,
        verification_token: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SubmitResult:
        """Create the caller's prediction and issue its recovery token.

        A row under any salt version of the caller's address is a conflict,
        so rotating the salt never opens a second slot.
        """
        identity, rate = self._admit(raw_address, OperationClass.SUBMIT)
        payload = self._parse(
            predicted_date, verification_token=verification_token, user_agent=user_agent
        )
        self._verify(payload.verification_token, raw_address)

        weight = self.weight_for(payload.predicted_date)
        prediction = self.store.create(
            identity.value,
            identity.salt_version,
            payload.predicted_date,
            weight,
            user_agent=payload.user_agent,
            other_hashes=self._older_hashes(raw_address, identity),
        )
        self.cache.invalidate()
        metrics.counter("prediction.created")
        logger.info(
            "prediction.created",
            identity=identity.prefix,
            predicted_date=payload.predicted_date.isoformat(),
            weight=weight,
        )

        median, delta, comparison = self._compare(payload.predicted_date)
        return SubmitResult(
            recovery_token=prediction.recovery_token,
            predicted_date=payload.predicted_date,
            weight=weight,
            consensus_median=median,
            delta_days=delta,
            comparison=comparison,
            rate=rate,
        )

    def update(
        self,
        raw_address: str,
        recovery_token: str,
        predicted_date,
        verification_token: Optional[str] = None,
    ) -> UpdateResult:
        """Change the prediction owning ``recovery_token``.

        Authorization is the token alone, so a contributor whose address has
        changed since submitting can still update.
        """
        _, rate = self._admit(raw_address, OperationClass.UPDATE)
        payload = self._parse(
            predicted_date,
            recovery_token=recovery_token,
            verification_token=verification_token,
        )
        self._verify(payload.verification_token, raw_address)

        outcome = self.store.update(
            payload.recovery_token,
            payload.predicted_date,
            self.weight_for(payload.predicted_date),
        )
        if outcome.changed:
            self.cache.invalidate()
            metrics.counter("prediction.updated")
            logger.info(
                "prediction.updated",
                previous_date=outcome.previous_date.isoformat(),
                predicted_date=payload.predicted_date.isoformat(),
            )

        median, delta, comparison = self._compare(payload.predicted_date)
        return UpdateResult(
            predicted_date=payload.predicted_date,
            previous_date=outcome.previous_date,
            consensus_median=median,
            delta_days=delta,
            comparison=comparison,
            rate=rate,
        )

    def delete(self, raw_address: str, recovery_token: str) -> Optional[RateDecision]:
        """Erase the prediction owning ``recovery_token``."""
        _, rate = self._admit(raw_address, OperationClass.DELETE)
        token = validate_recovery_token(recovery_token)
        self.store.delete(token)
        self.cache.invalidate()
        metrics.counter("prediction.deleted")
        logger.info("prediction.deleted", token=token[:8])
        return rate

    # --- reads ---

    def _compute_stats(self) -> AggregatedStats:
        records = self.store.fetch_weighted()
        computed_at = datetime.now(timezone.utc)
        if not records:
            return AggregatedStats(
                median=self.engine.reference_date,
                min=None,
                max=None,
                count=0,
                computed_at=computed_at,
            )
        return AggregatedStats(
            median=compute_median(records, fallback=self.engine.reference_date),
            min=records[0].date,
            max=records[-1].date,
            count=len(records),
            computed_at=computed_at,
        )

    def read_stats(self, raw_address: Optional[str] = None) -> StatsRead:
        """Stats plus cache and rate-limit details for response headers.

        Reads are rate limited only when a caller address is given.
        """
        rate = None
        if raw_address is not None:
            _, rate = self._admit(raw_address, OperationClass.READ)
        stats, hit = self.cache.lookup()
        return StatsRead(stats=stats, cache_hit=hit, rate=rate)

    def get_stats(self, raw_address: Optional[str] = None) -> AggregatedStats:
        return self.read_stats(raw_address).stats

    def classify_stats(self, stats: AggregatedStats) -> StatusResult:
        return classify(
            stats.median if stats.count else None,
            self.engine.reference_date,
            stats.count,
            minimum_sample=self.engine.minimum_sample,
            early_release_days=self.engine.early_release_days,
            on_track_max_days=self.engine.on_track_max_days,
            delay_likely_max_days=self.engine.delay_likely_max_days,
        )

    def read_status(self, raw_address: Optional[str] = None) -> StatusRead:
        read = self.read_stats(raw_address)
        return StatusRead(
            status=self.classify_stats(read.stats), cache_hit=read.cache_hit, rate=read.rate
        )

    def get_status(self, raw_address: Optional[str] = None) -> StatusResult:
        return self.read_status(raw_address).status

    def get_distribution(self) -> dict:
        """Prediction counts per date, withheld until enough predictions exist."""
        total = self.store.count()
        if total < self.engine.distribution_min_count:
            return {"data": [], "total_predictions": total}
        return {"data": self.store.distribution(), "total_predictions": total}
