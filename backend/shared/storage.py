"""Host-side persistence for the ledger and CSV interchange files.

The ledger snapshot is a single JSON document. Files are written with
owner-only permissions (0o600) inside an owner-only directory (0o700),
atomically via temp-file-then-rename so a crash never leaves a truncated
snapshot behind.
"""

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from ledger.models import Ledger

logger = structlog.get_logger()

# Owner-only directory permissions for ledger storage.
_DATA_DIR_MODE = 0o700

# Owner-only file permissions for ledger data files.
_DATA_FILE_MODE = 0o600


class LedgerStorage(Protocol):
    """Protocol for persisting the ledger snapshot."""

    def load(self) -> Ledger: ...

    def save(self, ledger: Ledger) -> None: ...


def write_text_atomic(target: Path, content: str, *, prefix: str = ".ledger_") -> None:
    """Write text to target via a synced temp file in the same directory, then rename."""
    target.parent.mkdir(mode=_DATA_DIR_MODE, parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp", prefix=prefix)
    fd_owned = True
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            fd_owned = False  # os.fdopen took ownership; it will close fd
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, _DATA_FILE_MODE)  # noqa: PTH101
        Path(tmp_path).replace(target)
    except BaseException:
        if fd_owned:
            with contextlib.suppress(OSError):
                os.close(fd)
        with contextlib.suppress(OSError):
            Path(tmp_path).unlink()
        raise


def read_csv_file(path: str | Path) -> str:
    """Read an external CSV file as text. A UTF-8 BOM is kept for the codec to strip."""
    with Path(path).open(encoding="utf-8", newline="") as f:
        return f.read()


class LocalLedgerStorage:
    """Loads and saves the ledger as a JSON snapshot on the local filesystem."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).resolve()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Ledger:
        """Load the snapshot, or an empty ledger when none exists yet.

        Raises OSError when an existing file cannot be read or parsed so a
        later save never overwrites data we failed to load.
        """
        if not self._path.exists():
            return Ledger()

        try:
            text = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to load ledger from {self._path}"
            raise OSError(msg) from exc

        # JSON mode so avatar bytes are decoded from base64
        try:
            ledger = Ledger.model_validate_json(text)
        except ValidationError as exc:
            msg = f"Failed to parse ledger data from {self._path}"
            raise OSError(msg) from exc

        logger.debug("loaded ledger", path=str(self._path), records=len(ledger.records))
        return ledger

    def save(self, ledger: Ledger) -> None:
        write_text_atomic(self._path, ledger.model_dump_json(indent=2))
        self._path.parent.chmod(_DATA_DIR_MODE)
        logger.info("saved ledger", path=str(self._path), records=len(ledger.records))
