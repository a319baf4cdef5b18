"""
Storage-State Store
===================
Persists authenticated browser sessions per role across test runs.

Responsibilities:
    1. Save ``storage_state`` (cookies + localStorage) after login
    2. Validate freshness (file age against ``max_age_minutes``, valid JSON)
    3. Read, list and clear saved states
    4. Sweep stale files (independent 24h cleanup)

One file per role (and optionally per environment) under a single
directory: ``<project_root>/<directory>/<file_pattern>``, where the pattern
holds ``{role}`` and optionally ``{env}``.  Age is always derived from the
file's mtime; nothing else is tracked.

Usage::

    from harness.auth.session_store import StorageStateStore, StorageStateOptions

    store = StorageStateStore(StorageStateOptions.from_config(auth_config.storage_state))
    path = store.load("admin")          # None → log in, then:
    await store.save(context, "admin")
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from playwright.async_api import BrowserContext
from playwright.async_api import Error as PlaywrightError

from .config import StorageStateConfig
from .errors import CAUSE_CORRUPTED, CAUSE_INVALID, CAUSE_MISSING, StorageStateError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings
# ---------------------------------------------------------------------------

DEFAULT_STORAGE_STATE_CONFIG = StorageStateConfig()
CLEANUP_MAX_AGE_MS = 24 * 60 * 60 * 1000
DEFAULT_ENVIRONMENT = "default"

_NAME_RE = re.compile(r"^[\w-]+$")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _mtime_ms(path: Path) -> int:
    return path.stat().st_mtime_ns // 1_000_000


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class StorageStateOptions:
    """Where states live and how long they stay fresh."""
    directory: str = DEFAULT_STORAGE_STATE_CONFIG.directory
    max_age_minutes: float = DEFAULT_STORAGE_STATE_CONFIG.max_age_minutes
    file_pattern: str = DEFAULT_STORAGE_STATE_CONFIG.file_pattern
    project_root: Optional[Union[str, Path]] = None   # None = current directory
    environment: str = DEFAULT_ENVIRONMENT

    @classmethod
    def from_config(
        cls,
        config: Optional[StorageStateConfig] = None,
        project_root: Optional[Union[str, Path]] = None,
        environment: Optional[str] = None,
    ) -> "StorageStateOptions":
        config = config or DEFAULT_STORAGE_STATE_CONFIG
        return cls(
            directory=config.directory,
            max_age_minutes=config.max_age_minutes,
            file_pattern=config.file_pattern,
            project_root=project_root,
            environment=environment or DEFAULT_ENVIRONMENT,
        )

    @property
    def max_age_ms(self) -> int:
        return int(self.max_age_minutes * 60_000)

    @property
    def state_dir(self) -> Path:
        root = Path(self.project_root) if self.project_root is not None else Path.cwd()
        return root / self.directory


@dataclass
class StorageStateMetadata:
    role: str
    created_at: datetime
    path: Path
    is_valid: bool


@dataclass
class CleanupResult:
    deleted_count: int = 0
    deleted_files: List[Path] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

def _pattern_with_suffix(pattern: str) -> str:
    return pattern if pattern.endswith(".json") else f"{pattern}.json"


def get_role_from_path(path: Union[str, Path], pattern: str = DEFAULT_STORAGE_STATE_CONFIG.file_pattern) -> Optional[str]:
    """Recover the role name from a state file name.

    ``{role}`` captures ``[\\w-]+``; ``{env}`` matches ``[\\w-]+``.

    >>> get_role_from_path("admin-staging.json", "{role}-{env}.json")
    'admin'
    """
    regex = ""
    for part in re.split(r"(\{role\}|\{env\})", _pattern_with_suffix(pattern)):
        if part == "{role}":
            regex += r"([\w-]+)"
        elif part == "{env}":
            regex += r"[\w-]+"
        else:
            regex += re.escape(part)
    match = re.fullmatch(regex, Path(path).name)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class StorageStateStore:
    """Filesystem store for per-role session artifacts.

    Validity checks never raise; explicit reads raise ``StorageStateError``
    tagged with a cause (missing, corrupted, invalid).
    """

    def __init__(
        self,
        options: Optional[StorageStateOptions] = None,
        now_ms: Optional[Callable[[], int]] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            options: Directory, pattern, max age, project root, environment.
            now_ms:  Clock returning epoch milliseconds (for tests).
            log:     Logger to use instead of the module logger.
        """
        self.options = options or StorageStateOptions()
        self._now_ms = now_ms or _now_ms
        self.log = log or logger

    # ── Paths ─────────────────────────────────────────────────────

    @property
    def directory(self) -> Path:
        return self.options.state_dir

    def get_path(self, role: str) -> Path:
        """Resolve the state file path for *role*.

        Raises:
            ValueError: If *role* or the environment are not ``[\\w-]+``.
        """
        env = self.options.environment or DEFAULT_ENVIRONMENT
        for label, value in (("role", role), ("environment", env)):
            if not _NAME_RE.match(value):
                raise ValueError(f"Invalid storage state {label} name: {value!r}")
        name = self.options.file_pattern.replace("{role}", role).replace("{env}", env)
        return self.directory / _pattern_with_suffix(name)

    # ── Write ─────────────────────────────────────────────────────

    async def save(self, context: BrowserContext, role: str) -> Path:
        """Write the context's storage state for *role*; return the path."""
        path = self.get_path(role)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await context.storage_state(path=str(path))
        except (OSError, PlaywrightError) as e:
            raise StorageStateError(
                f"Failed to save storage state: {e}", role=role, path=str(path), cause=CAUSE_INVALID
            ) from e
        self.log.info(f"[STORAGE] Saved session for role '{role}' to {path}")
        return path

    # ── Validity ──────────────────────────────────────────────────

    def _is_path_valid(self, path: Path) -> bool:
        try:
            age_ms = self._now_ms() - _mtime_ms(path)
            if age_ms > self.options.max_age_ms:
                self.log.debug(f"[STORAGE] {path.name} expired ({age_ms // 60_000} min old)")
                return False
            json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        return True

    def is_valid(self, role: str) -> bool:
        """True iff the role's file exists, parses as JSON and is not too old.

        ``age == max_age`` still counts as valid.  Never raises.
        """
        try:
            path = self.get_path(role)
        except ValueError:
            return False
        return self._is_path_valid(path)

    def load(self, role: str) -> Optional[Path]:
        """Return the role's state path if it can be reused, else None."""
        if self.is_valid(role):
            path = self.get_path(role)
            self.log.info(f"[STORAGE] Reusing session for role '{role}' ({path})")
            return path
        self.log.info(f"[STORAGE] No valid session for role '{role}'")
        return None

    # ── Read ──────────────────────────────────────────────────────

    def read(self, role: str) -> Dict[str, Any]:
        """Parse the role's state file.

        Raises:
            StorageStateError: ``missing`` if absent, ``corrupted`` if not a
                valid state document, ``invalid`` for other I/O errors.
        """
        path = self.get_path(role)
        if not path.exists():
            raise StorageStateError(
                f"Storage state not found for role '{role}'", role=role, path=str(path), cause=CAUSE_MISSING
            )
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageStateError(
                f"Failed to read storage state: {e}", role=role, path=str(path), cause=CAUSE_INVALID
            ) from e
        try:
            data = json.loads(text)
        except ValueError as e:
            raise StorageStateError(
                f"Storage state is not valid JSON: {e}", role=role, path=str(path), cause=CAUSE_CORRUPTED
            ) from e
        if not (
            isinstance(data, dict)
            and isinstance(data.get("cookies"), list)
            and isinstance(data.get("origins"), list)
        ):
            raise StorageStateError(
                "Storage state must contain 'cookies' and 'origins' lists",
                role=role, path=str(path), cause=CAUSE_CORRUPTED,
            )
        return data

    # ── Delete ────────────────────────────────────────────────────

    def clear(self, role: Optional[str] = None) -> int:
        """Delete one role's state, or every ``.json`` state when *role* is None.

        A file that cannot be removed during the full sweep is logged and
        skipped; a single-role clear raises ``OSError`` instead.

        Returns:
            Number of files deleted.
        """
        if role is not None:
            path = self.get_path(role)
            if not path.exists():
                return 0
            path.unlink()
            self.log.info(f"[STORAGE] Cleared session for role '{role}'")
            return 1

        if not self.directory.is_dir():
            return 0
        count = 0
        for path in sorted(self.directory.glob("*.json")):
            try:
                path.unlink()
            except OSError as e:
                self.log.warning(f"[STORAGE] Could not remove {path}: {e}")
                continue
            count += 1
        self.log.info(f"[STORAGE] Cleared {count} session file(s) from {self.directory}")
        return count

    def cleanup_older_than(self, max_age_ms: int) -> CleanupResult:
        """Delete state files older than *max_age_ms*.

        Per-file failures are collected in ``errors``; the sweep continues.
        """
        result = CleanupResult()
        if not self.directory.is_dir():
            return result

        now = self._now_ms()
        for path in sorted(self.directory.glob("*.json")):
            try:
                if now - _mtime_ms(path) > max_age_ms:
                    path.unlink()
                    result.deleted_files.append(path)
                    result.deleted_count += 1
            except OSError as e:
                result.errors.append({"path": str(path), "message": str(e)})

        if result.deleted_count or result.errors:
            self.log.info(
                f"[STORAGE] Cleanup removed {result.deleted_count} file(s), "
                f"{len(result.errors)} error(s)"
            )
        return result

    def cleanup_expired(self) -> CleanupResult:
        """Delete state files older than 24 hours."""
        return self.cleanup_older_than(CLEANUP_MAX_AGE_MS)

    # ── Introspection ─────────────────────────────────────────────

    def _metadata(self, role: str, path: Path) -> StorageStateMetadata:
        created = datetime.fromtimestamp(_mtime_ms(path) / 1000)
        return StorageStateMetadata(role=role, created_at=created, path=path, is_valid=self._is_path_valid(path))

    def get_metadata(self, role: str) -> Optional[StorageStateMetadata]:
        path = self.get_path(role)
        try:
            return self._metadata(role, path)
        except OSError:
            return None

    def list_states(self) -> List[StorageStateMetadata]:
        """Metadata for every state file whose name fits the pattern."""
        if not self.directory.is_dir():
            return []
        states = []
        for path in sorted(self.directory.glob("*.json")):
            role = get_role_from_path(path, self.options.file_pattern)
            if role is None:
                continue
            try:
                states.append(self._metadata(role, path))
            except OSError as e:
                self.log.debug(f"[STORAGE] Skipping {path.name}: {e}")
        return states

