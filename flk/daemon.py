"""Client for the Nix daemon's Unix socket worker protocol.

Only the operations the build runtime needs: check a path, register a
text file (our .drv files) and build derivation outputs. Daemon log
lines are forwarded to the ``flk.daemon`` logger.
"""

import logging
import socket
import struct

logger = logging.getLogger(__name__)

DEFAULT_SOCKET = "/nix/var/nix/daemon-socket/socket"

WORKER_MAGIC_1 = 0x6E697863  # "nixc"
WORKER_MAGIC_2 = 0x6478696F  # "dxio"
PROTOCOL_VERSION = (1 << 8) | 37

WOP_IS_VALID_PATH = 1
WOP_ADD_TEXT_TO_STORE = 8
WOP_BUILD_PATHS = 9

STDERR_NEXT = 0x6F6C6D67
STDERR_WRITE = 0x64617416
STDERR_LAST = 0x616C7473
STDERR_ERROR = 0x63787470
STDERR_START_ACTIVITY = 0x53545254
STDERR_STOP_ACTIVITY = 0x53544F50
STDERR_RESULT = 0x52534C54


class NixDaemonError(Exception):
    pass


class DaemonConnection:
    """One worker-protocol session. Use as a context manager."""

    def __init__(self, socket_path: str | None = None):
        self.socket_path = socket_path or DEFAULT_SOCKET
        self.sock: socket.socket | None = None
        self.daemon_version = 0

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.close()

    def connect(self) -> None:
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self.sock.connect(self.socket_path)
        except OSError as e:
            self.close()
            raise NixDaemonError(f"cannot connect to {self.socket_path}: {e}") from e
        self._handshake()

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    # --- wire format: little-endian u64, length-prefixed padded strings ---

    def _read(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.sock.recv(n - len(buf))
            if not chunk:
                raise NixDaemonError("daemon closed connection")
            buf += chunk
        return bytes(buf)

    def _put_int(self, n: int) -> None:
        self.sock.sendall(struct.pack("<Q", n))

    def _get_int(self) -> int:
        return struct.unpack("<Q", self._read(8))[0]

    def _put_str(self, s: str | bytes) -> None:
        data = s.encode() if isinstance(s, str) else s
        self.sock.sendall(struct.pack("<Q", len(data)) + data + b"\0" * (-len(data) % 8))

    def _get_str(self) -> str:
        n = self._get_int()
        data = self._read(n)
        self._read(-n % 8)
        return data.decode()

    def _put_strs(self, items: list[str]) -> None:
        self._put_int(len(items))
        for s in items:
            self._put_str(s)

    def _get_fields(self) -> list:
        fields = []
        for _ in range(self._get_int()):
            kind = self._get_int()
            if kind == 0:
                fields.append(self._get_int())
            elif kind == 1:
                fields.append(self._get_str())
            else:
                raise NixDaemonError(f"unknown field type: {kind}")
        return fields

    def _handshake(self) -> None:
        self._put_int(WORKER_MAGIC_1)
        magic = self._get_int()
        if magic != WORKER_MAGIC_2:
            raise NixDaemonError(f"bad daemon magic: {magic:#x}")
        self.daemon_version = self._get_int()
        self._put_int(PROTOCOL_VERSION)
        self._put_int(0)  # no CPU affinity
        self._put_int(0)  # reserveSpace = false
        if self.daemon_version >= (1 << 8 | 33):
            logger.debug("daemon nix version %s", self._get_str())
        if self.daemon_version >= (1 << 8 | 35):
            self._get_int()  # trusted flag
        self._process_stderr()

    def _process_stderr(self) -> None:
        """Consume daemon messages until STDERR_LAST, raising on STDERR_ERROR."""
        while True:
            kind = self._get_int()
            if kind == STDERR_LAST:
                return
            if kind == STDERR_ERROR:
                error_type = self._get_str()
                self._get_int()  # level
                self._get_str()  # name
                message = self._get_str()
                for _ in range(self._get_int()):
                    self._get_int()
                    self._get_str()
                raise NixDaemonError(f"{error_type}: {message}")
            if kind in (STDERR_NEXT, STDERR_WRITE):
                logger.debug("daemon: %s", self._get_str().rstrip())
            elif kind == STDERR_START_ACTIVITY:
                self._get_int()  # activity id
                self._get_int()  # level
                self._get_int()  # type
                text = self._get_str()
                self._get_fields()
                self._get_int()  # parent
                if text:
                    logger.info("daemon: %s", text)
            elif kind == STDERR_STOP_ACTIVITY:
                self._get_int()
            elif kind == STDERR_RESULT:
                self._get_int()
                self._get_int()
                self._get_fields()
            else:
                raise NixDaemonError(f"unexpected stderr message type: {kind:#x}")

    # --- operations ---

    def is_valid_path(self, path: str) -> bool:
        self._put_int(WOP_IS_VALID_PATH)
        self._put_str(path)
        self._process_stderr()
        return self._get_int() != 0

    def add_text_to_store(self, name: str, content: str, references: list[str] | None = None) -> str:
        self._put_int(WOP_ADD_TEXT_TO_STORE)
        self._put_str(name)
        self._put_str(content)
        self._put_strs(sorted(references or []))
        self._process_stderr()
        return self._get_str()

    def build_paths(self, paths: list[str], build_mode: int = 0) -> None:
        """Build ``drv!output`` paths (legacy DerivedPath syntax)."""
        self._put_int(WOP_BUILD_PATHS)
        self._put_strs(paths)
        self._put_int(build_mode)
        self._process_stderr()
        self._get_int()
