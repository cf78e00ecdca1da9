from __future__ import annotations

import asyncio
import contextlib
import hashlib
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from jiraoauth.logging import get_logger
from jiraoauth.storage.common import decode_session, encode_session
from jiraoauth.storage.errors import BackendError
from jiraoauth.storage.models import AuthSession

_SUFFIX = ".json"


class FileSessionBackend:
    """Session tier on a shared filesystem path (e.g. a mounted volume).

    One JSON file per session. File names are the SHA-256 of the state so the
    raw correlator never shows up in directory listings. Writes are atomic
    (temp file + rename) and concurrent writers follow last-writer-wins.
    """

    name = "file"

    def __init__(self, root: str | Path) -> None:
        self.logger = get_logger(__name__)
        self.root = Path(root)

    def _ensure_root(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, 0o700)
        except PermissionError:
            # Directory may be owned by another user on a shared mount
            pass
        except OSError as exc:
            raise BackendError(
                f"session directory unavailable: {exc}", backend=self.name
            ) from exc
        return self.root

    def _path_for(self, state: str) -> Path:
        digest = hashlib.sha256(state.encode("utf-8")).hexdigest()
        return self.root / f"{digest}{_SUFFIX}"

    def _write(self, session: AuthSession) -> None:
        root = self._ensure_root()
        target = self._path_for(session.state)
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(root), prefix=".session_", suffix=".tmp")
            try:
                os.write(fd, encode_session(session).encode("utf-8"))
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.replace(tmp_path, target)
        except OSError as exc:
            if tmp_path:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise BackendError(f"failed to write session: {exc}", backend=self.name) from exc

    def _read(self, path: Path) -> Optional[AuthSession]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackendError(f"failed to read session: {exc}", backend=self.name) from exc
        try:
            return decode_session(raw)
        except ValueError as exc:
            self.logger.warning("file_session_corrupt", path=path.name, error=str(exc))
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
            return None

    def _get(self, state: str) -> Optional[AuthSession]:
        session = self._read(self._path_for(state))
        if session is not None and session.state != state:
            # Hash collision or tampered file; treat as absent
            self.logger.warning("file_session_state_mismatch")
            return None
        return session

    def _delete(self, state: str) -> bool:
        path = self._path_for(state)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise BackendError(f"failed to delete session: {exc}", backend=self.name) from exc

    def _list(self) -> List[AuthSession]:
        if not self.root.exists():
            return []
        sessions: List[AuthSession] = []
        for path in sorted(self.root.glob(f"*{_SUFFIX}")):
            session = self._read(path)
            if session is not None:
                sessions.append(session)
        return sessions

    def _clear(self) -> int:
        if not self.root.exists():
            return 0
        removed = 0
        for path in self.root.glob(f"*{_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise BackendError(
                    f"failed to clear sessions: {exc}", backend=self.name
                ) from exc
        return removed

    # Disk I/O runs in worker threads, off the event loop

    async def put(self, session: AuthSession, ttl_seconds: int) -> None:
        await asyncio.to_thread(self._write, session)

    async def get(self, state: str) -> Optional[AuthSession]:
        return await asyncio.to_thread(self._get, state)

    async def delete(self, state: str) -> bool:
        return await asyncio.to_thread(self._delete, state)

    async def list(self) -> List[AuthSession]:
        return await asyncio.to_thread(self._list)

    async def clear(self) -> int:
        return await asyncio.to_thread(self._clear)
