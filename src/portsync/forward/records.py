"""On-disk record store of active tunnels."""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import RecordStoreError
from ..events import Protocol

logger = logging.getLogger(__name__)


class ForwardRecord(BaseModel):
    """One active tunnel: the forwarded port and its process id."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=1, le=65535, description="Forwarded port")
    pid: int = Field(ge=1, description="Tunnel process id")
    protocol: Protocol = Field(default=Protocol.TCP)

    def to_line(self) -> str:
        return f"{self.port}:{self.pid}"

    @classmethod
    def from_line(cls, line: str) -> "ForwardRecord":
        """Parse a ``port:pid`` line.

        Raises:
            ValueError: If the line is malformed
        """
        port, sep, pid = line.strip().partition(":")
        if not sep:
            raise ValueError(f"Expected 'port:pid', got {line.strip()!r}")
        return cls(port=int(port), pid=int(pid))


class RecordStore:
    """Line-oriented ``port:pid`` store; the source of truth for live tunnels.

    Additions are appended. Removals rewrite the whole file into a temporary
    sibling and rename it into place, so readers never see a partial file.
    At most one record exists per port.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> list[ForwardRecord]:
        """Read all records, skipping malformed lines.

        Raises:
            RecordStoreError: If the file exists but cannot be read
        """
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise RecordStoreError(f"Cannot read record store {self.path}: {e}") from e

        lines = text.splitlines()
        if lines and not text.endswith("\n"):
            # A crash mid-append leaves a partial last line
            logger.warning(f"Skipping unterminated last record in {self.path}: {lines[-1]!r}")
            lines.pop()

        records: dict[int, ForwardRecord] = {}
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                record = ForwardRecord.from_line(line)
            except ValueError as e:
                logger.warning(f"Skipping malformed record at {self.path}:{number}: {e}")
                continue
            if record.port in records:
                logger.warning(f"Duplicate record for port {record.port}, keeping first")
                continue
            records[record.port] = record
        return list(records.values())

    def get(self, port: int) -> ForwardRecord | None:
        for record in self.load():
            if record.port == port:
                return record
        return None

    def ports(self) -> set[int]:
        return {record.port for record in self.load()}

    def add(self, record: ForwardRecord) -> None:
        """Append a record.

        Raises:
            RecordStoreError: If a record for the port already exists or the write fails
        """
        records = self.load()
        if any(r.port == record.port for r in records):
            raise RecordStoreError(f"Record for port {record.port} already exists")
        if self._has_torn_tail():
            self._rewrite(records)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as f:
                f.write(record.to_line() + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise RecordStoreError(f"Cannot append to record store {self.path}: {e}") from e
        logger.info(f"Recorded tunnel for port {record.port} (pid {record.pid})")

    def remove(self, port: int) -> ForwardRecord | None:
        """Remove the record for a port by atomically replacing the file.

        Returns:
            The removed record, or None if there was none
        """
        records = self.load()
        removed = next((r for r in records if r.port == port), None)
        if removed is None:
            return None

        self._rewrite([r for r in records if r.port != port])
        logger.info(f"Removed tunnel record for port {port}")
        return removed

    def _has_torn_tail(self) -> bool:
        try:
            with self.path.open("rb") as f:
                if f.seek(0, os.SEEK_END) == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RecordStoreError(f"Cannot read record store {self.path}: {e}") from e

    def _rewrite(self, records: list[ForwardRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.writelines(record.to_line() + "\n" for record in records)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise RecordStoreError(f"Cannot rewrite record store {self.path}: {e}") from e

    def delete(self) -> None:
        """Remove the store file entirely."""
        try:
            self.path.unlink()
            logger.info(f"Deleted record store {self.path}")
        except FileNotFoundError:
            pass

    def __len__(self) -> int:
        return len(self.load())
