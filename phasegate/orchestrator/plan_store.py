"""Durable storage of plan documents.

Every plan is kept in two byte-identical copies: the archive copy under
``plans/<id>.json`` and the current pointer ``.phasegate/current-plan.json``
naming the most recently saved plan. Writes go to a sibling temp file, are
flushed and fsynced, then renamed over the target, archive first. Loading
prefers the archive and repairs the pointer (or the archive) when the copies
drift apart after a crash between the two writes.
"""

import hashlib
import json
import os
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..core.exceptions import (
    ConcurrentWriterError,
    PlanCorruptionError,
    PlanNotFoundError,
    PlanStoreError,
    PlanValidationError,
)
from ..core.plan_schema import Plan, plan_from_dict

CURRENT_POINTER = "current-plan.json"
PLAN_ID_PATTERN = re.compile(r"^(\d{3,})-[a-z0-9-]+$")


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def serialize_plan(plan: Plan) -> bytes:
    """Canonical on-disk bytes for a plan."""
    text = json.dumps(plan.model_dump(mode="json"), indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


class PlanStore:
    """Loads, saves and reconciles plan documents."""

    def __init__(self, plans_dir: Optional[Path] = None, state_dir: Optional[Path] = None):
        """Initialize plan store.

        Args:
            plans_dir: Directory for archive copies (defaults to ./plans)
            state_dir: Directory for the pointer and locks (defaults to ./.phasegate)

        Raises:
            PlanStoreError: If the directories cannot be created
        """
        self.plans_dir = Path(plans_dir) if plans_dir else Path.cwd() / "plans"
        self.state_dir = Path(state_dir) if state_dir else Path.cwd() / ".phasegate"
        self.pointer_file = self.state_dir / CURRENT_POINTER
        self.locks_dir = self.state_dir / "locks"

        # plan id -> digest of the archive bytes this store last read or wrote
        self._digests: Dict[str, str] = {}

        try:
            self.plans_dir.mkdir(parents=True, exist_ok=True)
            self.locks_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlanStoreError(f"Failed to create plan directories: {e}") from e

    def archive_path(self, plan_id: str) -> Path:
        """Path of a plan's archive copy."""
        return self.plans_dir / f"{plan_id}.json"

    def save(self, plan: Plan) -> Path:
        """Persist both copies of a plan.

        Returns:
            Path of the archive copy

        Raises:
            ConcurrentWriterError: If the archive changed since this store last saw it
            PlanStoreError: If either copy cannot be written
        """
        data = serialize_plan(plan)
        archive = self.archive_path(plan.id)

        self._check_concurrent_writer(plan.id, archive)

        self._atomic_write(archive, data)
        self._atomic_write(self.pointer_file, data)
        self._digests[plan.id] = _digest(data)

        return archive

    def load(self, identifier: Union[str, int, Path]) -> Plan:
        """Load and validate a plan, reconciling its two copies.

        Args:
            identifier: Plan number, full plan id, or path to a plan file

        Raises:
            PlanNotFoundError: If neither copy holds the plan
            PlanCorruptionError: If the preferred copy cannot be parsed or validated
            PlanStoreError: If a copy cannot be read or repaired
        """
        plan_id = self.resolve(identifier)
        archive = self.archive_path(plan_id)
        pointer_raw, pointer_id = self._read_pointer()

        if archive.exists():
            raw = self._read_bytes(archive)
            plan = self._parse(raw, archive)
            if plan.id != plan_id:
                raise PlanCorruptionError(
                    f"Archive {archive} holds plan {plan.id}, expected {plan_id}"
                )
            if pointer_id == plan_id and pointer_raw != raw:
                self._atomic_write(self.pointer_file, raw)
            self._digests[plan_id] = _digest(raw)
            return plan

        if pointer_id == plan_id and pointer_raw is not None:
            plan = self._parse(pointer_raw, self.pointer_file)
            self._atomic_write(archive, pointer_raw)
            self._digests[plan_id] = _digest(pointer_raw)
            return plan

        raise PlanNotFoundError(f"Plan not found: {plan_id}")

    def load_current(self) -> Plan:
        """Load the plan named by the current pointer.

        Raises:
            PlanNotFoundError: If there is no current plan
            PlanCorruptionError: If the pointer cannot be parsed
        """
        pointer_raw, pointer_id = self._read_pointer()
        if pointer_raw is None:
            raise PlanNotFoundError("No current plan")
        if pointer_id is None:
            raise PlanCorruptionError(f"Current plan pointer is unreadable: {self.pointer_file}")
        return self.load(pointer_id)

    def current_plan_id(self) -> Optional[str]:
        """Id of the plan named by the current pointer, if readable."""
        return self._read_pointer()[1]

    def create(self, plan: Plan) -> Plan:
        """Store a new plan.

        Raises:
            PlanStoreError: If a plan with the same number already exists
        """
        taken = [pid for pid in self._known_ids() if self._number_of(pid) == plan.plan_number]
        if taken:
            raise PlanStoreError(
                f"Plan number {plan.plan_number:03d} is already used by {taken[0]}"
            )
        self.save(plan)
        return plan

    def next_plan_number(self) -> int:
        """Next free plan number (one more than the highest in use)."""
        numbers = [self._number_of(pid) for pid in self._known_ids()]
        return max(numbers, default=0) + 1

    def list_plans(self) -> List[Plan]:
        """All archived plans ordered by plan number.

        Raises:
            PlanCorruptionError: If an archive copy cannot be parsed
        """
        plans = []
        for plan_id in self._archive_ids():
            archive = self.archive_path(plan_id)
            raw = self._read_bytes(archive)
            plans.append(self._parse(raw, archive))
        return sorted(plans, key=lambda p: p.plan_number)

    def exists(self, plan_id: str) -> bool:
        """Check whether either copy holds a plan."""
        return self.archive_path(plan_id).exists() or self.current_plan_id() == plan_id

    def resolve(self, ref: Union[str, int, Path]) -> str:
        """Turn a plan reference into a plan id.

        Accepts a plan number (``3`` or ``003``), a full plan id, or a path to
        a plan file.

        Raises:
            PlanNotFoundError: If no plan matches
        """
        text = str(ref).strip()

        if text.endswith(".json"):
            path = Path(text)
            if path.exists() and path.resolve() == self.pointer_file.resolve():
                pointer_id = self.current_plan_id()
                if pointer_id is None:
                    raise PlanCorruptionError(
                        f"Current plan pointer is unreadable: {self.pointer_file}"
                    )
                return pointer_id
            text = path.stem

        if text.isdigit():
            number = int(text)
            for plan_id in self._known_ids():
                if self._number_of(plan_id) == number:
                    return plan_id
            raise PlanNotFoundError(f"No plan with number {number:03d}")

        if self.exists(text):
            return text

        raise PlanNotFoundError(f"Plan not found: {text}")

    @contextmanager
    def lock(self, plan_id: str) -> Iterator[None]:
        """Hold the run lock for a plan for the duration of the block."""
        self.acquire_lock(plan_id)
        try:
            yield
        finally:
            self.release_lock(plan_id)

    def acquire_lock(self, plan_id: str) -> None:
        """Take the run lock, replacing a stale one.

        Raises:
            ConcurrentWriterError: If a live process holds the lock
        """
        lock_file = self._lock_file(plan_id)
        holder = self.lock_holder(plan_id)
        if holder is not None and holder != os.getpid():
            raise ConcurrentWriterError(
                f"Plan {plan_id} is being executed by process {holder}"
            )

        try:
            if lock_file.exists():
                lock_file.unlink()
            fd = os.open(str(lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            raise ConcurrentWriterError(f"Plan {plan_id} was locked concurrently") from e
        except OSError as e:
            raise PlanStoreError(f"Failed to create lock for {plan_id}: {e}") from e

        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))

    def release_lock(self, plan_id: str) -> None:
        """Release the run lock if this process holds it."""
        if self.lock_holder(plan_id) == os.getpid():
            try:
                self._lock_file(plan_id).unlink()
            except FileNotFoundError:
                pass

    def lock_holder(self, plan_id: str) -> Optional[int]:
        """PID of the live process holding the lock, or None."""
        lock_file = self._lock_file(plan_id)
        try:
            pid = int(lock_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None
        return pid if _pid_alive(pid) else None

    def is_locked(self, plan_id: str) -> bool:
        """Check whether a live process holds the run lock."""
        return self.lock_holder(plan_id) is not None

    def _lock_file(self, plan_id: str) -> Path:
        return self.locks_dir / f"{plan_id}.lock"

    def _check_concurrent_writer(self, plan_id: str, archive: Path) -> None:
        expected = self._digests.get(plan_id)
        if expected is None or not archive.exists():
            return
        if _digest(self._read_bytes(archive)) != expected:
            raise ConcurrentWriterError(
                f"Plan {plan_id} was modified by another writer since it was loaded"
            )

    def _read_pointer(self) -> Tuple[Optional[bytes], Optional[str]]:
        """Raw pointer bytes and the id of the plan they hold (None if unreadable)."""
        if not self.pointer_file.exists():
            return None, None
        raw = self._read_bytes(self.pointer_file)
        try:
            data = json.loads(raw.decode("utf-8"))
            return raw, f"{int(data['plan_number']):03d}-{data['slug']}"
        except (UnicodeDecodeError, ValueError, KeyError, TypeError):
            return raw, None

    def _archive_ids(self) -> List[str]:
        return sorted(
            f.stem for f in self.plans_dir.glob("*.json") if PLAN_ID_PATTERN.match(f.stem)
        )

    def _known_ids(self) -> List[str]:
        ids = set(self._archive_ids())
        pointer_id = self.current_plan_id()
        if pointer_id and PLAN_ID_PATTERN.match(pointer_id):
            ids.add(pointer_id)
        return sorted(ids)

    @staticmethod
    def _number_of(plan_id: str) -> int:
        match = PLAN_ID_PATTERN.match(plan_id)
        return int(match.group(1)) if match else 0

    @staticmethod
    def _read_bytes(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise PlanStoreError(f"Failed to read {path}: {e}") from e

    @staticmethod
    def _parse(raw: bytes, source: Path) -> Plan:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise PlanCorruptionError(f"Plan file {source} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise PlanCorruptionError(f"Plan file {source} does not hold a plan object")
        try:
            return plan_from_dict(data)
        except PlanValidationError as e:
            raise PlanCorruptionError(f"Plan file {source} failed validation: {e}") from e

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        temp_file = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            # Rename to final location (atomic on POSIX systems)
            temp_file.replace(path)
        except OSError as e:
            raise PlanStoreError(f"Failed to write {path}: {e}") from e


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
