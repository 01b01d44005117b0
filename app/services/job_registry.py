"""
Job Registry - Record store for users and shorts jobs.

Records are kept in a SQLite file (registry.sqlite in the data directory)
through sqlitedict. Users and jobs share one table, keyed "user:<id>" and
"job:<id>", so a change touching both (debit + create, refund + flag) is
committed in a single transaction. A write that fails before commit is rolled
back by SQLite when the connection closes.

Callers serialize mutations to a given user or job with the per-key locks
exposed here (one lock per owner, one per job).
"""

import asyncio
import logging
import os
import sqlite3
import threading
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from sqlitedict import SqliteDict

from app.config import get_settings
from app.services.job_state import JobStatus, ensure_transition

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"
JOB_PREFIX = "job:"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class UserRecord:
    """A registered user and their credit balance."""

    id: str
    email: str
    password_hash: str
    credits: int
    created_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _format_dt(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "UserRecord":
        return cls(
            id=data["id"],
            email=data["email"],
            password_hash=data["password_hash"],
            credits=int(data["credits"]),
            created_at=_parse_dt(data["created_at"]),
        )


@dataclass
class SegmentRecord:
    """One published short. Written once, never changed."""

    index: int
    start_time: float
    duration: float
    storage_key: str
    thumbnail_key: str
    size_bytes: int
    overlay_text: Optional[str] = None


@dataclass
class JobRecord:
    """A shorts job and its results."""

    id: str
    owner_id: str
    source_url: str
    title: str
    source_duration_seconds: float
    status: JobStatus
    segment_count: int
    segment_duration_seconds: float
    credits_reserved: int
    created_at: datetime
    expires_at: datetime
    segments: list[SegmentRecord] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    refunded: bool = False
    callback_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = _format_dt(self.created_at)
        data["expires_at"] = _format_dt(self.expires_at)
        data["completed_at"] = _format_dt(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "JobRecord":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            source_url=data["source_url"],
            title=data["title"],
            source_duration_seconds=float(data["source_duration_seconds"]),
            status=JobStatus(data["status"]),
            segment_count=int(data["segment_count"]),
            segment_duration_seconds=float(data["segment_duration_seconds"]),
            credits_reserved=int(data["credits_reserved"]),
            created_at=_parse_dt(data["created_at"]),
            expires_at=_parse_dt(data["expires_at"]),
            segments=[SegmentRecord(**s) for s in data.get("segments", [])],
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
            refunded=bool(data.get("refunded", False)),
            callback_url=data.get("callback_url"),
        )


class KeyedLocks:
    """
    One asyncio.Lock per key, created on first use.

    A key's lock is dropped as soon as nobody holds or waits on it, so the
    map only ever holds keys that are in use.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class JobRegistry:
    """
    Record store for users and jobs.

    Reads return fresh objects; changes go through apply() (or the helpers
    built on it) so a failed write never leaves half-applied state behind.
    """

    DB_FILE = "registry.sqlite"
    TABLE = "records"

    def __init__(self, data_directory: Optional[str] = None):
        """
        Args:
            data_directory: Where registry.sqlite lives (defaults to settings)
        """
        self.data_directory = data_directory or get_settings().data_directory
        self.db_path = os.path.join(self.data_directory, self.DB_FILE)
        self._lock = threading.Lock()
        self._owner_locks = KeyedLocks()
        self._job_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def owner_lock(self, owner_id: str):
        """Lock serializing changes to one user's balance (async context manager)."""
        return self._owner_locks.hold(owner_id)

    def job_lock(self, job_id: str):
        """Lock serializing changes to one job record (async context manager)."""
        return self._job_locks.hold(job_id)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _db(self) -> SqliteDict:
        # Open/close per operation; commits are explicit
        return SqliteDict(self.db_path, tablename=self.TABLE, autocommit=False)

    def load(self) -> None:
        """Create the database if needed and log what it holds."""
        os.makedirs(self.data_directory, exist_ok=True)
        with self._lock, self._db() as db:
            keys = list(db.keys())

        users = sum(1 for k in keys if k.startswith(USER_PREFIX))
        jobs = sum(1 for k in keys if k.startswith(JOB_PREFIX))
        logger.info(f"Registry loaded: {users} users, {jobs} jobs from {self.db_path}")

    def _get(self, key: str) -> Optional[dict]:
        with self._lock, self._db() as db:
            return db.get(key)

    def _values(self, prefix: str) -> list[dict]:
        with self._lock, self._db() as db:
            return [value for key, value in db.items() if key.startswith(prefix)]

    def _apply_sync(
        self,
        users: list[UserRecord],
        jobs: list[JobRecord],
        delete_job_ids: list[str],
    ) -> None:
        with self._lock, self._db() as db:
            for user in users:
                db[USER_PREFIX + user.id] = user.to_dict()
            for job in jobs:
                db[JOB_PREFIX + job.id] = job.to_dict()
            for job_id in delete_job_ids:
                if JOB_PREFIX + job_id in db:
                    del db[JOB_PREFIX + job_id]
            db.commit()

    async def apply(
        self,
        users: Iterable[UserRecord] = (),
        jobs: Iterable[JobRecord] = (),
        delete_job_ids: Iterable[str] = (),
    ) -> None:
        """
        Apply a set of record changes in one transaction.

        Either every change is committed, or none is.

        Raises:
            RegistryError: If the write fails (nothing is committed)
        """
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None, self._apply_sync, list(users), list(jobs), list(delete_job_ids)
            )
        except (OSError, sqlite3.Error, RuntimeError) as e:
            raise RegistryError(f"Failed to write registry: {e}") from e

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        data = self._get(USER_PREFIX + user_id)
        return UserRecord.from_dict(data) if data else None

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.strip().lower()
        for data in self._values(USER_PREFIX):
            if data["email"] == email:
                return UserRecord.from_dict(data)
        return None

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        data = self._get(JOB_PREFIX + job_id)
        return JobRecord.from_dict(data) if data else None

    def list_jobs(
        self,
        owner_id: Optional[str] = None,
        statuses: Optional[Iterable[JobStatus]] = None,
    ) -> list[JobRecord]:
        """List jobs, newest first, optionally filtered by owner and status."""
        wanted = {s.value for s in statuses} if statuses is not None else None
        jobs = [
            JobRecord.from_dict(data)
            for data in self._values(JOB_PREFIX)
            if (owner_id is None or data["owner_id"] == owner_id)
            and (wanted is None or data["status"] in wanted)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def update_job(self, job_id: str, mutate: Callable[[JobRecord], None]) -> JobRecord:
        """
        Change a job record under its lock.

        The mutator receives a copy; any status change it makes is checked
        against the lifecycle before anything is stored.

        Raises:
            KeyError: If the job does not exist
            InvalidTransitionError: If the mutator moves the status illegally
        """
        async with self.job_lock(job_id):
            current = self.get_job(job_id)
            if current is None:
                raise KeyError(f"Job not found: {job_id}")

            updated = self.get_job(job_id)
            mutate(updated)
            if updated.status != current.status:
                ensure_transition(current.status, updated.status)

            await self.apply(jobs=[updated])
            return updated

    async def delete_job(self, job_id: str) -> None:
        async with self.job_lock(job_id):
            await self.apply(delete_job_ids=[job_id])


class RegistryError(Exception):
    """Exception raised when the record store cannot be written."""
    pass
