from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import threading
import uuid
from typing import Any, Dict, Iterator, List, Optional, Union

from .context import Context
from .errors import InvalidStateError
from .references import Reference
from .settings import Settings

logger = logging.getLogger(__name__)

@dataclass
class _Session:
    ctx: Context
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionArena:
    """
    Open contexts (one per character, game, ...) keyed by opaque ids.
    The arena owns every context; callers hold ids, never the contexts themselves.
    One writer per session at a time; readers get the current context.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def open(self, ctx: Optional[Context] = None) -> str:
        sid = uuid.uuid4().hex
        with self._lock:
            self._sessions[sid] = _Session(ctx if ctx is not None else Context(self.settings))
        logger.debug("opened session %s", sid)
        return sid

    def close(self, sid: str) -> Context:
        with self._lock:
            s = self._sessions.pop(sid, None)
        if s is None:
            raise InvalidStateError(f"no open session '{sid}'")
        logger.debug("closed session %s", sid)
        return s.ctx

    def _get(self, sid: str) -> _Session:
        with self._lock:
            s = self._sessions.get(sid)
        if s is None:
            raise InvalidStateError(f"no open session '{sid}'")
        return s

    def view(self, sid: str) -> Context:
        """The session's context for evaluation; do not mutate it outside write()."""
        return self._get(sid).ctx

    @contextmanager
    def write(self, sid: str) -> Iterator[Context]:
        """
        Exclusive mutable access. Changes are made on a copy and published
        only if the block finishes without raising.
        """
        s = self._get(sid)
        with s.lock:
            staged = s.ctx.copy()
            yield staged
            s.ctx = staged

    def resolve(self, sid: str, ref: Union[Reference, str]) -> Any:
        return self.view(sid).resolve(ref)

    def sessions(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def __contains__(self, sid: str) -> bool:
        with self._lock:
            return sid in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
