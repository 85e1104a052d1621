"""PID marker for the background daemon.

The marker is a single integer in ``<data_dir>/server.pid``. A missing or
unreadable marker means the daemon is not running; a marker naming a dead
process is stale and is removed when the status is checked.
"""
import os
from pathlib import Path
from typing import NamedTuple, Optional

PID_FILE = "server.pid"


class ServerStatus(NamedTuple):
    running: bool
    pid: Optional[int]


def get_pid_file_path(data_dir: Path) -> Path:
    return Path(data_dir) / PID_FILE


def write_pid(data_dir: Path, pid: int) -> None:
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    get_pid_file_path(data_dir).write_text(str(pid))


def read_pid(data_dir: Path) -> Optional[int]:
    try:
        content = get_pid_file_path(data_dir).read_text().strip()
    except OSError:
        return None
    try:
        pid = int(content)
    except ValueError:
        return None
    if pid <= 0:
        return None
    return pid


def remove_pid(data_dir: Path) -> None:
    try:
        get_pid_file_path(data_dir).unlink()
    except FileNotFoundError:
        pass


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists but owned by another user
        return True
    return True


def get_server_status(data_dir: Path) -> ServerStatus:
    pid = read_pid(data_dir)
    if pid is None:
        return ServerStatus(running=False, pid=None)
    if is_process_running(pid):
        return ServerStatus(running=True, pid=pid)
    remove_pid(data_dir)
    return ServerStatus(running=False, pid=None)
