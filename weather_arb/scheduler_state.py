"""
Scheduler State Store

Cross-process state shared between the scanner daemon and observers:
- Status snapshot (scanner-status.json), replaced atomically after every tick
- Liveness marker (weather-arb.pid) holding the owner's process id

Only the owner writes. The marker is claimed exclusively, so two processes
starting together cannot both own it. Observers read, and delete both files
when the marker points at a dead process.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .monitoring import get_logger

logger = get_logger("scheduler_state")

STATUS_FILENAME = "scanner-status.json"
MARKER_FILENAME = "weather-arb.pid"


def is_pid_alive(pid: int) -> bool:
    """Check whether a process exists (signal 0 probes without delivering)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but owned by another user
        return True
    except OSError:
        return False
    return True


def get_default_status(
    locations: Optional[list] = None,
    interval_seconds: Optional[int] = None,
    dry_run: Optional[bool] = None,
) -> Dict[str, Any]:
    """Return a stopped scanner status."""
    return {
        "running": False,
        "pid": None,
        "last_check_at": None,
        "locations": list(locations or []),
        "interval_seconds": interval_seconds,
        "dry_run": dry_run,
        "last_readings": [],
    }


class StatusStore:
    """
    File-backed status and liveness marker.

    Write failures are logged and swallowed; a disk problem must never
    take down the trading loop.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.status_path = self.data_dir / STATUS_FILENAME
        self.marker_path = self.data_dir / MARKER_FILENAME

    def _atomic_write(self, path: Path, data: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def write_status(self, status: Dict[str, Any]) -> bool:
        """Replace the status file; readers never see a partial write."""
        try:
            self._atomic_write(self.status_path, status)
            return True
        except OSError as e:
            logger.error(f"Failed to write status file: {e}")
            return False

    def read_status(self) -> Optional[Dict[str, Any]]:
        """Load the status file, or None if missing or corrupt."""
        try:
            with open(self.status_path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable status file: {e}")
            return None
        return data if isinstance(data, dict) else None

    def status_age_seconds(self, status: Optional[Dict[str, Any]] = None) -> Optional[float]:
        """
        Age of the snapshot, from its last_check_at or else the file mtime.
        """
        now = datetime.now(timezone.utc)
        last_check = (status or {}).get("last_check_at")
        if last_check:
            try:
                checked = datetime.fromisoformat(last_check)
                if checked.tzinfo is None:
                    checked = checked.replace(tzinfo=timezone.utc)
                return (now - checked).total_seconds()
            except (TypeError, ValueError):
                pass
        try:
            return now.timestamp() - self.status_path.stat().st_mtime
        except OSError:
            return None

    def write_marker(self, pid: int) -> bool:
        """Claim ownership by recording our process id."""
        try:
            self._atomic_write(self.marker_path, {"pid": pid})
            return True
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            return False

    def claim_marker(self, pid: int) -> bool:
        """
        Create the marker only if none exists.

        The marker is written to a temp file and hard-linked into place, so
        creation is exclusive and readers never see an empty marker.

        Returns:
            True if this call created the marker, False if one already exists

        Raises:
            OSError: if the marker cannot be written for any other reason
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.marker_path.with_name(f"{self.marker_path.name}.{pid}.claim")
        try:
            with open(tmp, "w") as f:
                json.dump({"pid": pid}, f)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp, self.marker_path)
            except FileExistsError:
                return False
            return True
        finally:
            if tmp.exists():
                tmp.unlink()

    def read_marker(self) -> Optional[int]:
        """Owner pid from the marker. Accepts {"pid": n} or a bare integer."""
        try:
            raw = self.marker_path.read_text().strip()
        except OSError:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        pid = data.get("pid") if isinstance(data, dict) else data
        if isinstance(pid, bool) or not isinstance(pid, int):
            return None
        return pid

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")

    def remove_status(self) -> None:
        self._remove(self.status_path)

    def remove_marker(self) -> None:
        self._remove(self.marker_path)

    def live_owner_pid(self) -> Optional[int]:
        """Pid of a live owner, or None when there is no marker or it is dead."""
        pid = self.read_marker()
        if pid is not None and is_pid_alive(pid):
            return pid
        return None
