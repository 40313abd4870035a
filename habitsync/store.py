"""
Publish/read boundary between the owning process and display surfaces.

The shared region is a directory named after the namespace under
SHARED_ROOT; each key is one JSON file in it. Writes replace the whole value
(temp file + rename), so a reader sees either the previous list or the new
one, never a mix. There is a single writer, the last write wins and nothing
is merged.
"""
import fcntl
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional
from pydantic import ValidationError
from .config import settings
from .models import (
    PLACEHOLDER_SNAPSHOT, ActivityEnvelope, ProgressSnapshot, SnapshotEnvelope,
    StoreConstants, TimerActivity,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class SerializationError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class FileRegion:
    """Key-value region backed by one directory."""

    def __init__(self, path: Path, shared: bool):
        self.path = path
        self.shared = shared

    def _key_path(self, key: str) -> Path:
        return self.path / f"{key}.json"

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self._key_path(key).read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, payload: bytes):
        target = self._key_path(key)
        tmp_path = target.with_suffix('.tmp')
        self.path.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'wb') as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        os.rename(tmp_path, target)


def open_region(namespace: str = StoreConstants.NAMESPACE,
                shared_root: Optional[str] = None,
                local_dir: Optional[str] = None) -> FileRegion:
    shared = Path(shared_root or settings.SHARED_ROOT) / namespace
    if shared.is_dir():
        return FileRegion(shared, shared=True)

    local = Path(local_dir or settings.LOCAL_STATE_DIR) / "standard"
    logger.warning(f"Shared namespace {namespace} not provisioned at {shared}; "
                   f"using process-local store {local}. Display surfaces may show stale data.")
    return FileRegion(local, shared=False)


class SnapshotStore:
    def __init__(self,
                 shared_root: Optional[str] = None,
                 local_dir: Optional[str] = None,
                 namespace: str = StoreConstants.NAMESPACE,
                 on_published: Optional[Callable[[], None]] = None):
        self.shared_root = shared_root
        self.local_dir = local_dir
        self.namespace = namespace
        self.on_published = on_published

    def region(self) -> FileRegion:
        # Resolved per call, the namespace may be provisioned while we run
        return open_region(self.namespace, self.shared_root, self.local_dir)

    # Writer side

    def _write(self, key: str, envelope) -> Optional[StoreError]:
        try:
            payload = envelope.model_dump_json().encode("utf-8")
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to encode {key}: {e}")
            return SerializationError(str(e))

        if not settings.PERSIST_ENABLED:
            return None

        try:
            self.region().set(key, payload)
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            return StoreWriteError(str(e))
        return None

    def publish(self, snapshots: List[ProgressSnapshot]) -> Optional[StoreError]:
        """
        Replace the published list. Returns None on success, otherwise the
        error; the previously published value is left untouched on failure.
        """
        try:
            envelope = SnapshotEnvelope(snapshots=list(snapshots))
        except ValidationError as e:
            logger.error(f"Refusing to publish invalid snapshots: {e}")
            return SerializationError(str(e))

        error = self._write(StoreConstants.SNAPSHOTS_KEY, envelope)
        if error is None:
            logger.debug(f"Published {len(envelope.snapshots)} snapshots")
            if self.on_published:
                self.on_published()
        return error

    def publish_activities(self, activities: Dict[str, TimerActivity]) -> Optional[StoreError]:
        try:
            envelope = ActivityEnvelope(activities=dict(activities))
        except ValidationError as e:
            logger.error(f"Refusing to publish invalid activities: {e}")
            return SerializationError(str(e))
        return self._write(StoreConstants.ACTIVITIES_KEY, envelope)

    # Reader side

    def read(self) -> List[ProgressSnapshot]:
        """Never raises; anything unusable reads as the placeholder."""
        try:
            payload = self.region().get(StoreConstants.SNAPSHOTS_KEY)
        except OSError as e:
            logger.warning(f"Failed to read snapshots: {e}")
            payload = None
        if payload is None:
            return [PLACEHOLDER_SNAPSHOT]

        try:
            envelope = SnapshotEnvelope.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Failed to decode snapshots: {e}")
            return [PLACEHOLDER_SNAPSHOT]

        return envelope.snapshots or [PLACEHOLDER_SNAPSHOT]

    def snapshot(self, habit_id: str) -> Optional[ProgressSnapshot]:
        for snap in self.read():
            if snap.id == habit_id:
                return snap
        return None

    def read_activities(self) -> Dict[str, TimerActivity]:
        try:
            payload = self.region().get(StoreConstants.ACTIVITIES_KEY)
        except OSError as e:
            logger.warning(f"Failed to read timer activities: {e}")
            return {}
        if payload is None:
            return {}

        try:
            return ActivityEnvelope.model_validate_json(payload).activities
        except ValidationError as e:
            logger.warning(f"Failed to decode timer activities: {e}")
            return {}
