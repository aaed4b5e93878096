import asyncio
import typing
import logging
import secrets
import threading
from sdft.conf import DEFAULT_ALLOWED_CHARS
from sdft.error import CodeCollisionError, CodeSpaceExhaustedError
from sdft.relay.serialization import UPLOAD, DOWNLOAD

if typing.TYPE_CHECKING:
    from sdft.relay.connection import Connection

log = logging.getLogger(__name__)


class Session:
    """
    A registered client. Upload sessions can be looked up by a downloader and
    paired with it once, download sessions only hold their code.
    """

    def __init__(self, role: str, connection: typing.Optional['Connection'] = None,
                 file_name: typing.Optional[str] = None, file_type: typing.Optional[str] = None,
                 file_size: typing.Optional[int] = None, password: typing.Optional[str] = None,
                 pairing: typing.Optional[asyncio.Future] = None):
        assert role in (UPLOAD, DOWNLOAD), f"unknown session role '{role}'"
        self.role = role
        self.connection = connection
        self.file_name = file_name
        self.file_type = file_type
        self.file_size = file_size
        self.password = password
        self.pairing = pairing
        self.code: typing.Optional[str] = None
        self.busy = False

    def __repr__(self):
        return f"Session({self.role}, code={self.code}, busy={self.busy})"

    @property
    def is_upload(self) -> bool:
        return self.role == UPLOAD

    def pair(self, downloader: 'Connection') -> bool:
        """
        Hand the downloader connection to the task serving the uploader.
        """
        if self.pairing is None or self.pairing.done():
            return False
        self.pairing.set_result(downloader)
        return True


class SessionRegistry:

    def __init__(self, code_size: int = 5, allowed_chars: str = DEFAULT_ALLOWED_CHARS):
        assert code_size > 0, "code size must be positive"
        assert len(set(allowed_chars)) >= 2, "code alphabet needs at least two characters"
        self.code_size = code_size
        self.allowed_chars = ''.join(sorted(set(allowed_chars), key=allowed_chars.index))
        self._lock = threading.Lock()
        self._sessions: typing.Dict[str, Session] = {}
        self._reserved: typing.Set[str] = set()

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def __contains__(self, code: str):
        with self._lock:
            return code in self._sessions

    def _generate(self, code_length: int) -> str:
        return ''.join(secrets.choice(self.allowed_chars) for _ in range(code_length))

    def allocate(self, code_length: typing.Optional[int] = None) -> str:
        """
        Draw a code not used by any live session. The code stays reserved until
        it is registered or released.
        """
        code_length = code_length or self.code_size
        space = len(self.allowed_chars) ** code_length
        while True:
            code = self._generate(code_length)
            with self._lock:
                taken = len(self._sessions) + len(self._reserved)
                if taken >= space:
                    raise CodeSpaceExhaustedError(code_length)
                if code not in self._sessions and code not in self._reserved:
                    self._reserved.add(code)
                    return code

    def register(self, code: str, session: Session):
        with self._lock:
            if code in self._sessions:
                raise CodeCollisionError(code)
            self._reserved.discard(code)
            session.code = code
            self._sessions[code] = session
        log.debug("registered %s", session)

    def lookup(self, code: str) -> typing.Optional[Session]:
        with self._lock:
            return self._sessions.get(code)

    def mark_busy(self, code: str) -> bool:
        """
        Flag the session as paired, only the first caller for a code succeeds.
        """
        with self._lock:
            session = self._sessions.get(code)
            if session is None or session.busy:
                return False
            session.busy = True
            return True

    def release(self, code: str) -> typing.Optional[Session]:
        with self._lock:
            self._reserved.discard(code)
            session = self._sessions.pop(code, None)
        if session is not None:
            log.debug("released %s", session)
        return session
