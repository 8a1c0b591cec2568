"""Inspection of the server's postmaster.pid lock file."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

LOCK_FILE_NAME = "postmaster.pid"


def pid_alive(pid: int) -> bool:
    """Signal-0 probe. A process we may not signal still exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass(frozen=True)
class LockFile:
    path: Path
    pid: Optional[int]
    lines: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, path: Path, text: str) -> "LockFile":
        """Build from the file contents; the first line is the owner PID."""
        lines = text.splitlines()
        pid = None
        if lines and lines[0].strip().isdigit():
            pid = int(lines[0].strip())
        return cls(path=Path(path), pid=pid, lines=lines)

    def owner_alive(self) -> bool:
        return self.pid is not None and pid_alive(self.pid)

    def head(self, count: int = 6) -> List[str]:
        return self.lines[:count]


def socket_files(port: int, socket_dirs: Iterable[Path]) -> List[Path]:
    """Unix socket (and socket lock) paths a server on port leaves behind."""
    paths = []
    for directory in socket_dirs:
        socket = Path(directory) / f".s.PGSQL.{port}"
        paths.extend([socket, socket.with_name(socket.name + ".lock")])
    return paths


def stale_files(lock: LockFile, port: int, socket_dirs: Iterable[Path]) -> List[Path]:
    """Files to delete when lock's owner is gone."""
    if lock.owner_alive():
        raise ValueError(f"{lock.path} is held by live process {lock.pid}")
    return [lock.path, *socket_files(port, socket_dirs)]
