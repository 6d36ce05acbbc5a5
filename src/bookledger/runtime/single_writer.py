import fcntl
from pathlib import Path
from typing import IO, Optional


class SingleWriterLockHeld(RuntimeError):
    pass


class SingleWriterLock:
    """
    Enforces a single-process writer for a ledger database file.
    Uses a filesystem lock (flock), released on close or process exit.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.path, "w")
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fd.close()
            raise SingleWriterLockHeld(f"single-writer lock already held: {self.path}") from None
        self._fd = fd

    def release(self) -> None:
        if self._fd:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None
