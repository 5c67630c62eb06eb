"""SQLite persistence for community predictions.

One row per contributor identity. The recovery token issued at creation is the
only credential that can change or erase a row afterwards.
"""

import sqlite3
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence

import structlog

from cli.retry import store_retry
from db import DEFAULT_BUSY_TIMEOUT, wal_connect

from .errors import ConflictError, NotFoundError, TransientStoreError
from .median import WeightedDate

logger = structlog.get_logger()


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Prediction:
    identity_hash: str
    salt_version: str
    recovery_token: str
    predicted_date: date
    weight: float
    user_agent: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Prediction":
        return cls(
            id=row["id"],
            identity_hash=row["identity_hash"],
            salt_version=row["salt_version"],
            recovery_token=row["recovery_token"],
            predicted_date=date.fromisoformat(row["predicted_date"]),
            weight=row["weight"],
            user_agent=row["user_agent"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class UpdateOutcome:
    prediction: Prediction
    previous_date: date
    changed: bool


class PredictionStore:
    """Transactional prediction store on a WAL-mode SQLite file."""

    def __init__(
        self,
        db_path: Path,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
        retry_attempts: int = 3,
        retry_min_wait: float = 0.05,
        retry_max_wait: float = 1.0,
    ):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._retry = store_retry(
            max_attempts=retry_attempts,
            min_wait=retry_min_wait,
            max_wait=retry_max_wait,
        )
        self._init_tables()

    def _init_tables(self):
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS predictions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity_hash TEXT NOT NULL UNIQUE,
                    salt_version TEXT NOT NULL,
                    recovery_token TEXT NOT NULL UNIQUE,
                    predicted_date TEXT NOT NULL,
                    weight REAL NOT NULL CHECK(weight > 0 AND weight <= 1),
                    user_agent TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_predictions_date ON predictions(predicted_date)"
            )

    @contextmanager
    def _transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction; commit on success, roll back otherwise."""
        with closing(wal_connect(self.db_path, row_factory=True, timeout=self.busy_timeout)) as conn:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def _run(self, operation: str, fn, *args):
        """Execute ``fn`` with bounded retries; exhaustion becomes TransientStoreError."""
        try:
            return self._retry(fn)(*args)
        except sqlite3.OperationalError as e:
            logger.error("store.transient_failure", operation=operation, error=str(e))
            raise TransientStoreError() from e

    # --- writes ---

    def create(
        self,
        identity_hash: str,
        salt_version: str,
        predicted_date: date,
        weight: float,
        user_agent: Optional[str] = None,
        other_hashes: Sequence[str] = (),
    ) -> Prediction:
        """Insert the identity's prediction. Raises ConflictError if one exists.

        ``other_hashes`` are the same contributor's hashes under older salt
        versions; a row under any of them also counts as existing.
        """
        return self._run(
            "create",
            self._create,
            identity_hash,
            salt_version,
            predicted_date,
            weight,
            user_agent,
            tuple(other_hashes),
        )

    def _create(self, identity_hash, salt_version, predicted_date, weight, user_agent, other_hashes):
        now = _utcnow()
        hashes = list(dict.fromkeys((identity_hash, *other_hashes)))
        # A token collision is astronomically unlikely; regenerate once.
        for attempt in range(2):
            prediction = Prediction(
                identity_hash=identity_hash,
                salt_version=salt_version,
                recovery_token=str(uuid.uuid4()),
                predicted_date=predicted_date,
                weight=weight,
                user_agent=user_agent,
                created_at=now,
                updated_at=now,
            )
            try:
                with self._transaction() as conn:
                    placeholders = ", ".join("?" for _ in hashes)
                    existing = conn.execute(
                        f"SELECT 1 FROM predictions WHERE identity_hash IN ({placeholders}) LIMIT 1",
                        hashes,
                    ).fetchone()
                    if existing is not None:
                        raise ConflictError()
                    cur = conn.execute(
                        """INSERT INTO predictions
                        (identity_hash, salt_version, recovery_token, predicted_date,
                         weight, user_agent, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            prediction.identity_hash,
                            prediction.salt_version,
                            prediction.recovery_token,
                            prediction.predicted_date.isoformat(),
                            prediction.weight,
                            prediction.user_agent,
                            prediction.created_at,
                            prediction.updated_at,
                        ),
                    )
                    prediction.id = cur.lastrowid
                return prediction
            except sqlite3.IntegrityError as e:
                message = str(e)
                if "identity_hash" in message:
                    raise ConflictError() from e
                if "recovery_token" in message and attempt == 0:
                    logger.warning("store.token_collision")
                    continue
                raise
        raise TransientStoreError()

    def update(self, recovery_token: str, predicted_date: date, weight: float) -> UpdateOutcome:
        """Rewrite the date and weight of the row owning ``recovery_token``."""
        return self._run("update", self._update, recovery_token, predicted_date, weight)

    def _update(self, recovery_token, predicted_date, weight):
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM predictions WHERE recovery_token = ?", (recovery_token,)
            ).fetchone()
            if row is None:
                raise NotFoundError()
            current = Prediction.from_row(row)
            previous = current.predicted_date

            if previous == predicted_date and current.weight == weight:
                return UpdateOutcome(current, previous, changed=False)

            now = _utcnow()
            conn.execute(
                """UPDATE predictions
                SET predicted_date = ?, weight = ?, updated_at = ?
                WHERE recovery_token = ?""",
                (predicted_date.isoformat(), weight, now, recovery_token),
            )
            current.predicted_date = predicted_date
            current.weight = weight
            current.updated_at = now
            return UpdateOutcome(current, previous, changed=True)

    def delete(self, recovery_token: str) -> None:
        """Erase the row owning ``recovery_token``."""
        self._run("delete", self._delete, recovery_token)

    def _delete(self, recovery_token):
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM predictions WHERE recovery_token = ?", (recovery_token,)
            )
            if cur.rowcount == 0:
                raise NotFoundError()

    def reweigh(self, weight_fn) -> int:
        """Recompute every stored weight with ``weight_fn(date)``. Returns rows changed."""
        return self._run("reweigh", self._reweigh, weight_fn)

    def _reweigh(self, weight_fn):
        changed = 0
        with self._transaction() as conn:
            rows = conn.execute("SELECT id, predicted_date, weight FROM predictions").fetchall()
            for row in rows:
                weight = weight_fn(date.fromisoformat(row["predicted_date"]))
                if weight != row["weight"]:
                    conn.execute(
                        "UPDATE predictions SET weight = ? WHERE id = ?", (weight, row["id"])
                    )
                    changed += 1
        return changed

    def clear(self) -> int:
        """Delete all predictions. Returns rows removed."""
        return self._run("clear", self._clear)

    def _clear(self):
        with self._transaction() as conn:
            return conn.execute("DELETE FROM predictions").rowcount

    # --- reads ---

    def get_by_token(self, recovery_token: str) -> Optional[Prediction]:
        return self._run("get_by_token", self._get_by_token, recovery_token)

    def _get_by_token(self, recovery_token):
        with self._transaction(immediate=False) as conn:
            row = conn.execute(
                "SELECT * FROM predictions WHERE recovery_token = ?", (recovery_token,)
            ).fetchone()
        return Prediction.from_row(row) if row else None

    def fetch_weighted(self) -> list[WeightedDate]:
        """All (date, weight) pairs, ascending by date."""
        return self._run("fetch_weighted", self._fetch_weighted)

    def _fetch_weighted(self):
        with self._transaction(immediate=False) as conn:
            rows = conn.execute(
                "SELECT predicted_date, weight FROM predictions ORDER BY predicted_date ASC"
            ).fetchall()
        return [WeightedDate(date.fromisoformat(r["predicted_date"]), r["weight"]) for r in rows]

    def distribution(self) -> list[dict]:
        """Prediction counts grouped by date, ascending."""
        return self._run("distribution", self._distribution)

    def _distribution(self):
        with self._transaction(immediate=False) as conn:
            rows = conn.execute(
                """SELECT predicted_date, COUNT(*) AS count
                FROM predictions GROUP BY predicted_date ORDER BY predicted_date ASC"""
            ).fetchall()
        return [{"predicted_date": r["predicted_date"], "count": r["count"]} for r in rows]

    def count(self) -> int:
        return self._run("count", self._count)

    def _count(self):
        with self._transaction(immediate=False) as conn:
            return conn.execute("SELECT COUNT(*) FROM predictions").fetchone()[0]
