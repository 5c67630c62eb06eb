"""End-to-end tests for the prediction engine facade."""

import threading
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from admission.identity import IdentityResolver
from admission.rate_limit import InMemoryCounterStore, RateLimiter, RateLimitRule
from admission.verification import VerificationResult
from cli.config_models import ConsensusConfig, EngineConfig
from observability import metrics
from predictions.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    VerificationError,
)
from predictions.service import PredictionService, compare_to_median
from shared_types import Comparison, OperationClass, StatusCategory

ADDR_A = "203.0.113.10"
ADDR_B = "203.0.113.11"
ADDR_C = "203.0.113.12"


class TestSubmit:
    def test_near_prediction_full_weight(self, make_service):
        service = make_service()
        result = service.submit(ADDR_A, "2027-03-01")
        assert result.weight == 1.0
        assert result.predicted_date == date(2027, 3, 1)
        assert service.get_stats().count == 1

    def test_outlier_barely_moves_median(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        result = service.submit(ADDR_B, "2099-01-01")
        assert result.weight == 0.1
        assert service.get_stats().median == date(2027, 1, 1)

    def test_result_compares_against_consensus_including_itself(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        service.submit(ADDR_B, "2027-03-01")
        assert service.get_stats().median == date(2027, 1, 1)
        result = service.submit(ADDR_C, "2027-05-01")
        # Three equal weights: the new record moves the median to the middle one.
        assert result.consensus_median == date(2027, 3, 1)
        assert result.delta_days == 61
        assert result.comparison == Comparison.PESSIMISTIC
        assert "weight" not in result.to_dict()

    def test_second_submit_from_same_address_conflicts(self, make_service, store):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        with pytest.raises(ConflictError):
            service.submit(ADDR_A, "2028-01-01")
        assert store.count() == 1

    def test_salt_rotation_keeps_one_record_per_address(self, make_service, store):
        make_service().submit(ADDR_A, "2027-01-01")
        rotated = make_service(
            resolver=IdentityResolver({"v1": "test-salt-v1", "v2": "test-salt-v2"}, "v2")
        )
        with pytest.raises(ConflictError):
            rotated.submit(ADDR_A, "2028-01-01")
        assert store.count() == 1
        rotated.submit(ADDR_B, "2028-01-01")
        assert store.count() == 2

    def test_datetime_rejected(self, make_service, store):
        with pytest.raises(ValidationError):
            make_service().submit(ADDR_A, datetime(2027, 1, 1, 12))
        assert store.count() == 0

    def test_equivalent_address_spellings_conflict(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        with pytest.raises(ConflictError):
            service.submit(f"::ffff:{ADDR_A}", "2028-01-01")

    def test_concurrent_same_identity(self, make_service, store):
        service = make_service()
        outcomes = []
        barrier = threading.Barrier(2)

        def worker(d):
            barrier.wait()
            try:
                outcomes.append(service.submit(ADDR_A, d))
            except ConflictError as e:
                outcomes.append(e)

        threads = [threading.Thread(target=worker, args=(d,)) for d in ("2027-01-01", "2027-02-01")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
        assert store.count() == 1

    def test_invalid_date_rejected_before_store(self, make_service, store):
        service = make_service()
        with pytest.raises(ValidationError):
            service.submit(ADDR_A, "2027-02-30")
        assert store.count() == 0

    def test_bad_address_rejected(self, make_service):
        with pytest.raises(ValidationError):
            make_service().submit("not-an-ip", "2027-01-01")

    def test_metrics(self, make_service):
        make_service().submit(ADDR_A, "2027-01-01")
        assert metrics.get("prediction.created") == 1


class TestUpdate:
    def test_update_with_token(self, make_service, store):
        service = make_service()
        token = service.submit(ADDR_A, "2027-01-01").recovery_token
        result = service.update(ADDR_B, token, "2028-06-01")
        assert result.previous_date == date(2027, 1, 1)
        assert result.predicted_date == date(2028, 6, 1)
        assert store.get_by_token(token).predicted_date == date(2028, 6, 1)
        assert service.get_stats().median == date(2028, 6, 1)

    def test_wrong_token_leaves_record_unchanged(self, make_service, store):
        service = make_service()
        token = service.submit(ADDR_A, "2027-01-01").recovery_token
        with pytest.raises(NotFoundError):
            service.update(ADDR_A, "3f2504e0-4f89-41d3-9a0c-0305e82c3301", "2030-01-01")
        assert store.get_by_token(token).predicted_date == date(2027, 1, 1)

    def test_malformed_token(self, make_service):
        with pytest.raises(ValidationError):
            make_service().update(ADDR_A, "nope", "2030-01-01")

    def test_unchanged_update_keeps_cache(self, make_service):
        service = make_service()
        token = service.submit(ADDR_A, "2027-01-01").recovery_token
        service.get_stats()
        recomputes = metrics.get("stats.recompute")
        service.update(ADDR_A, token, "2027-01-01")
        service.get_stats()
        assert metrics.get("stats.recompute") == recomputes
        assert metrics.get("prediction.updated") == 0

    def test_reweighs_on_update(self, make_service, store):
        service = make_service()
        token = service.submit(ADDR_A, "2027-01-01").recovery_token
        service.update(ADDR_A, token, "2099-01-01")
        assert store.get_by_token(token).weight == 0.1

    def test_result_compares_against_updated_consensus(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        service.submit(ADDR_B, "2027-03-01")
        token = service.submit(ADDR_C, "2027-05-01").recovery_token
        result = service.update(ADDR_C, token, "2027-02-01")
        assert result.consensus_median == date(2027, 2, 1)
        assert result.delta_days == 0
        assert result.comparison == Comparison.ALIGNED
        assert result.to_dict()["comparison"] == "aligned"


class TestDelete:
    def test_delete_frees_identity(self, make_service, store):
        service = make_service()
        token = service.submit(ADDR_A, "2027-01-01").recovery_token
        service.delete(ADDR_A, token)
        assert store.count() == 0
        assert service.get_stats().count == 0
        service.submit(ADDR_A, "2027-05-01")

    def test_delete_unknown(self, make_service):
        with pytest.raises(NotFoundError):
            make_service().delete(ADDR_A, "3f2504e0-4f89-41d3-9a0c-0305e82c3301")


class TestReads:
    def test_empty_stats(self, make_service, engine_config):
        stats = make_service().get_stats()
        assert stats.count == 0
        assert stats.median == engine_config.reference_date
        assert stats.min is None and stats.max is None

    def test_min_max(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2030-01-01")
        service.submit(ADDR_B, "2027-01-01")
        stats = service.get_stats()
        assert stats.min == date(2027, 1, 1)
        assert stats.max == date(2030, 1, 1)
        assert stats.min <= stats.median <= stats.max

    def test_repeat_reads_share_one_recompute(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        service.get_stats()
        service.get_stats()
        assert metrics.get("stats.recompute") == 1

    def test_read_stats_reports_cache_hit(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        assert service.read_stats().cache_hit is True
        service.cache.invalidate()
        first = service.read_stats()
        assert first.cache_hit is False
        assert first.rate is None
        assert service.read_status().cache_hit is True

    def test_status_gathering_data_below_minimum(self, make_service):
        service = make_service(engine=EngineConfig(minimum_sample=50))
        service.submit(ADDR_A, "2030-01-01")
        status = service.get_status()
        assert status.category == StatusCategory.GATHERING_DATA
        assert status.count == 1

    def test_status_classified(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-12-01")
        status = service.get_status()
        assert status.category == StatusCategory.MAJOR_DELAY
        assert status.delta_days == 377

    def test_empty_status(self, make_service):
        assert make_service().get_status().category == StatusCategory.GATHERING_DATA

    def test_distribution_withheld_below_threshold(self, make_service):
        service = make_service()
        service.submit(ADDR_A, "2027-01-01")
        service.submit(ADDR_B, "2027-01-01")
        assert service.get_distribution() == {"data": [], "total_predictions": 2}

        service.submit(ADDR_C, "2027-02-01")
        dist = service.get_distribution()
        assert dist["total_predictions"] == 3
        assert dist["data"] == [
            {"predicted_date": "2027-01-01", "count": 2},
            {"predicted_date": "2027-02-01", "count": 1},
        ]


class TestAdmission:
    def test_rate_limited_submit(self, make_service, clock):
        limiter = RateLimiter(
            {OperationClass.SUBMIT: RateLimitRule(limit=2, window_seconds=60)},
            store=InMemoryCounterStore(clock=clock),
        )
        service = make_service(limiter=limiter)
        service.submit(ADDR_A, "2027-01-01")
        with pytest.raises(ConflictError):
            service.submit(ADDR_A, "2027-01-01")
        with pytest.raises(RateLimitError) as exc:
            service.submit(ADDR_A, "2027-01-01")
        assert exc.value.retry_after == 60

        clock.advance(60)
        with pytest.raises(ConflictError):
            service.submit(ADDR_A, "2027-01-01")

    def test_reads_limited_only_with_address(self, make_service, clock):
        limiter = RateLimiter(
            {OperationClass.READ: RateLimitRule(limit=1, window_seconds=60)},
            store=InMemoryCounterStore(clock=clock),
        )
        service = make_service(limiter=limiter)
        service.get_stats(ADDR_A)
        with pytest.raises(RateLimitError):
            service.get_stats(ADDR_A)
        service.get_stats()
        service.get_stats(ADDR_B)

    def test_reads_carry_rate_decision(self, make_service, clock):
        limiter = RateLimiter(
            {OperationClass.READ: RateLimitRule(limit=5, window_seconds=60)},
            store=InMemoryCounterStore(clock=clock),
        )
        service = make_service(limiter=limiter)
        read = service.read_status(ADDR_A)
        assert read.rate.limit == 5
        assert read.rate.remaining == 4

    def test_rate_limit_error_carries_limit(self, make_service, clock):
        limiter = RateLimiter(
            {OperationClass.READ: RateLimitRule(limit=1, window_seconds=60)},
            store=InMemoryCounterStore(clock=clock),
        )
        service = make_service(limiter=limiter)
        service.read_stats(ADDR_A)
        with pytest.raises(RateLimitError) as exc:
            service.read_stats(ADDR_A)
        assert exc.value.limit == 1

    def test_verification_failure(self, make_service, store):
        verifier = MagicMock()
        verifier.verify.return_value = VerificationResult(passed=False, error_codes=["invalid-input-response"])
        service = make_service(verifier=verifier)
        with pytest.raises(VerificationError):
            service.submit(ADDR_A, "2027-01-01", verification_token="bad")
        assert store.count() == 0
        verifier.verify.assert_called_once_with("bad", ADDR_A)


def test_compare_to_median():
    median = date(2027, 1, 1)
    assert compare_to_median(date(2027, 1, 1), median) == (0, Comparison.ALIGNED)
    assert compare_to_median(date(2026, 12, 30), median) == (-2, Comparison.OPTIMISTIC)
    assert compare_to_median(date(2027, 1, 3), median) == (2, Comparison.PESSIMISTIC)


class TestFromConfig:
    def test_builds_engine(self, tmp_path):
        config = ConsensusConfig.from_dict({
            "store": {"db_path": str(tmp_path / "p.db")},
            "identity": {"salts": {"v1": "secret"}, "current_version": "v1"},
        })
        service = PredictionService.from_config(config)
        assert service.limiter is not None
        service.submit(ADDR_A, "2027-01-01")
        assert service.get_stats().count == 1

    def test_missing_salt_is_fatal(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SALT_V1", raising=False)
        config = ConsensusConfig.from_dict({"store": {"db_path": str(tmp_path / "p.db")}})
        with pytest.raises(ConfigurationError):
            PredictionService.from_config(config)
