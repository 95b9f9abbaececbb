"""Cross-process file locks so two batch jobs never rebuild the same tables at once.

Each job name gets its own lock file. A lock is considered stale when it is
older than the TTL or when the process that wrote it is gone.
"""
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger("training.lock")

DEFAULT_LOCK_DIR = "/tmp"
DEFAULT_RETRIES = 5
DEFAULT_DELAY_SEC = 2.0
DEFAULT_TTL_SEC = 60 * 30


@dataclass
class LockHolder:
    pid: Optional[int]
    job: Optional[str]
    acquired_at: Optional[float]

    @classmethod
    def parse(cls, payload: str) -> "LockHolder":
        fields = dict(part.split("=", 1) for part in payload.split() if "=" in part)
        try:
            pid = int(fields["pid"])
        except (KeyError, ValueError):
            pid = None
        try:
            acquired_at = float(fields["time"])
        except (KeyError, ValueError):
            acquired_at = None
        return cls(pid=pid, job=fields.get("job"), acquired_at=acquired_at)

    def alive(self) -> bool:
        if self.pid is None or self.pid <= 0:
            # Unknown holder; only the TTL can expire it.
            return True
        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except OSError:
            # Exists but not ours to signal.
            return True
        return True


def _env_number(key: str, default, cast):
    try:
        return cast(os.getenv(key, str(default)))
    except ValueError:
        return default


def lock_path(job: str) -> Path:
    base = os.getenv("TRAINING_LOCK_DIR", DEFAULT_LOCK_DIR)
    return Path(base) / f"training_{job}.lock"


def read_holder(path: Path) -> Optional[LockHolder]:
    try:
        return LockHolder.parse(path.read_text(encoding="utf-8"))
    except OSError:
        return None


def _is_stale(path: Path) -> bool:
    try:
        age = time.time() - path.stat().st_mtime
    except OSError:
        return False
    if age > _env_number("TRAINING_LOCK_TTL_SECONDS", DEFAULT_TTL_SEC, int):
        return True
    holder = read_holder(path)
    return holder is not None and not holder.alive()


def _acquire(path: Path, job: str) -> bool:
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        return False
    try:
        os.write(fd, f"pid={os.getpid()} job={job} time={time.time()}\n".encode("utf-8"))
    finally:
        os.close(fd)
    return True


def _release(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


@contextmanager
def job_lock(job: str, retries: Optional[int] = None, delay: Optional[float] = None) -> Iterator[bool]:
    """Hold the lock for ``job``; yields False when it could not be taken."""
    path = lock_path(job)
    if retries is None:
        retries = _env_number("TRAINING_LOCK_RETRIES", DEFAULT_RETRIES, int)
    if delay is None:
        delay = _env_number("TRAINING_LOCK_RETRY_SEC", DEFAULT_DELAY_SEC, float)

    acquired = False
    for attempt in range(retries + 1):
        if _acquire(path, job):
            acquired = True
            break
        if _is_stale(path):
            logger.warning("stale_lock job=%s path=%s", job, path)
            _release(path)
            if _acquire(path, job):
                acquired = True
                break
        if attempt < retries:
            time.sleep(delay)

    if not acquired:
        holder = read_holder(path)
        logger.warning("lock_busy job=%s holder_pid=%s", job, holder.pid if holder else None)
    try:
        yield acquired
    finally:
        if acquired:
            _release(path)
