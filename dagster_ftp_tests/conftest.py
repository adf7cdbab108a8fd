import ftplib
import io
import sys
import threading
import time
from collections import Counter
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from pyftpdlib.authorizers import DummyAuthorizer
from pyftpdlib.handlers import FTPHandler as PyFTPDHandler
from pyftpdlib.servers import FTPServer

from dagster_ftp.config import FTPConfig
from dagster_ftp.handler import FTPHandler

FTP_USERNAME = "testuser"
FTP_PASSWORD = "testpass"


def _stack_depth() -> int:
    depth = 0
    frame = sys._getframe(1)
    while frame is not None:
        depth += 1
        frame = frame.f_back
    return depth


class _Dir:
    __slots__ = ("children",)

    def __init__(self):
        self.children: dict[str, "_Dir | bytes"] = {}


class FakeFTPServer:
    """In-memory FTP server state shared by every FakeFTP client it creates."""

    def __init__(self, users: dict[str, str] | None = None):
        self.root = _Dir()
        self.users = users if users is not None else {FTP_USERNAME: FTP_PASSWORD}
        self.reachable = True
        self.epoch = 0
        self.connections = 0
        self.calls: list[tuple[str, str]] = []
        self.fail_store = False
        self.fail_completion = False
        self.fail_data_close = False
        self.command_delay = 0.0
        self.track_stack_depth = False
        self.max_stack_depth = 0
        self._lock = threading.Lock()
        self._active = 0
        self.max_active = 0
        self.clients: list["FakeFTP"] = []

    def drop_connections(self) -> None:
        """Simulate the server closing every open control connection."""
        self.epoch += 1

    def count(self, command: str) -> int:
        return Counter(name for name, _ in self.calls)[command]

    def enter(self, command: str, arg: str) -> None:
        with self._lock:
            self.calls.append((command, arg))
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        if self.track_stack_depth:
            self.max_stack_depth = max(self.max_stack_depth, _stack_depth())
        if self.command_delay:
            time.sleep(self.command_delay)

    def leave(self) -> None:
        with self._lock:
            self._active -= 1

    def node(self, path: str) -> "_Dir | bytes | None":
        node = self.root
        for segment in [s for s in path.split("/") if s]:
            if not isinstance(node, _Dir):
                return None
            node = node.children.get(segment)
            if node is None:
                return None
        return node

    def put(self, path: str, content: bytes) -> None:
        segments = [s for s in path.split("/") if s]
        node = self.root
        for segment in segments[:-1]:
            node = node.children.setdefault(segment, _Dir())
        node.children[segments[-1]] = content

    def makedirs(self, path: str) -> _Dir:
        node = self.root
        for segment in [s for s in path.split("/") if s]:
            node = node.children.setdefault(segment, _Dir())
        return node

    def client(self, config: FTPConfig | None = None) -> "FakeFTP":
        client = FakeFTP(self)
        self.clients.append(client)
        return client


class _FakeDataFile(io.BytesIO):
    def __init__(
        self, initial: bytes = b"", on_close: Callable[[bytes], None] | None = None
    ):
        super().__init__(initial)
        self._on_close = on_close

    def close(self) -> None:
        if not self.closed and self._on_close is not None:
            self._on_close(self.getvalue())
        super().close()


class _FakeDataConnection:
    def __init__(self, server: FakeFTPServer, file: _FakeDataFile):
        self._server = server
        self._file = file
        self.closed = False

    def makefile(self, mode: str) -> _FakeDataFile:
        return self._file

    def close(self) -> None:
        self.closed = True
        if self._server.fail_data_close:
            raise OSError("connection reset by peer")


def _list_line(name: str, node: "_Dir | bytes") -> str:
    if isinstance(node, _Dir):
        return f"drwxr-xr-x   2 owner    group        4096 Jan 01 12:00 {name}"
    return f"-rw-r--r--   1 owner    group    {len(node):>8} Jan 01 12:00 {name}"


class FakeFTP:
    """Stand-in for ``ftplib.FTP`` backed by a FakeFTPServer.

    A transfer aborted by its callback or reader leaves the client out of step
    like ``ftplib`` does: the completion reply stays unread, NOOP still passes,
    and every other command receives a stale reply until the next connect.
    """

    def __init__(self, server: FakeFTPServer):
        self.server = server
        self.sock = None
        self.passive = True
        self._epoch = -1
        self._logged_in = False
        self._out_of_step = False
        self._cwd: list[tuple[str, _Dir]] = []

    # connection

    def _command(self, command: str, arg: str = "") -> None:
        if self.sock is None:
            raise OSError("not connected")
        if self._epoch != self.server.epoch:
            raise EOFError()
        if self._out_of_step and command not in ("NOOP", "QUIT"):
            raise ftplib.error_reply("200 Type set to: Binary.")
        self.server.enter(command, arg)

    def _done(self) -> None:
        self.server.leave()

    def set_pasv(self, value: bool) -> None:
        self.passive = value

    def connect(self, host: str = "", port: int = 0, timeout: float = -999) -> str:
        if not self.server.reachable:
            raise ConnectionRefusedError(111, "Connection refused")
        self.sock = object()
        self._epoch = self.server.epoch
        self._logged_in = False
        self._out_of_step = False
        self._cwd = []
        self.server.connections += 1
        return "220 Fake FTP server ready."

    def login(self, user: str = "", passwd: str = "", acct: str = "") -> str:
        self._command("USER", user)
        try:
            if self.server.users.get(user) != passwd:
                raise ftplib.error_perm("530 Login incorrect.")
            self._logged_in = True
            return "230 Login successful."
        finally:
            self._done()

    def voidcmd(self, cmd: str) -> str:
        self._command(cmd.split(" ", 1)[0], cmd)
        self._done()
        return "200 OK."

    def quit(self) -> str:
        self._command("QUIT")
        self._done()
        self.close()
        return "221 Goodbye."

    def close(self) -> None:
        self.sock = None

    # navigation

    def _cwd_node(self) -> _Dir:
        return self._cwd[-1][1] if self._cwd else self.server.root

    def pwd(self) -> str:
        return "/" + "/".join(name for name, _ in self._cwd)

    def _lookup(self, name: str) -> "_Dir | bytes | None":
        if name.startswith("/"):
            return self.server.node(name)
        return self._cwd_node().children.get(name)

    def cwd(self, dirname: str) -> str:
        self._command("CWD", dirname)
        try:
            if dirname == "..":
                if self._cwd:
                    self._cwd.pop()
                return "250 OK."
            if dirname.startswith("/"):
                new_cwd = []
                node = self.server.root
                for segment in [s for s in dirname.split("/") if s]:
                    if isinstance(node, _Dir):
                        node = node.children.get(segment)
                    if not isinstance(node, _Dir):
                        raise ftplib.error_perm(f"550 {dirname}: No such directory.")
                    new_cwd.append((segment, node))
                self._cwd = new_cwd
                return "250 OK."
            node = self._cwd_node().children.get(dirname)
            if not isinstance(node, _Dir):
                raise ftplib.error_perm(f"550 {dirname}: No such directory.")
            self._cwd.append((dirname, node))
            return "250 OK."
        finally:
            self._done()

    def mkd(self, dirname: str) -> str:
        self._command("MKD", dirname)
        try:
            parent = self._cwd_node()
            if dirname in parent.children:
                raise ftplib.error_perm(f"550 {dirname}: File exists.")
            parent.children[dirname] = _Dir()
            return dirname
        finally:
            self._done()

    # listing

    def mlsd(self, path: str = "", facts=None):
        self._command("MLSD", path)
        try:
            node = self._lookup(path) if path else self._cwd_node()
            if not isinstance(node, _Dir):
                raise ftplib.error_perm(f"550 {path}: No such directory.")
            entries = [(".", {"type": "cdir"}), ("..", {"type": "pdir"})]
            for name, child in node.children.items():
                if isinstance(child, _Dir):
                    entries.append((name, {"type": "dir", "modify": "20240101120000"}))
                else:
                    facts = {
                        "type": "file",
                        "size": str(len(child)),
                        "modify": "20240101120000",
                    }
                    entries.append((name, facts))
            return iter(entries)
        finally:
            self._done()

    def retrlines(self, cmd: str, callback=None) -> str:
        verb, _, arg = cmd.partition(" ")
        self._command(verb, arg)
        try:
            if verb != "LIST":
                raise ftplib.error_perm(f"502 {verb} not implemented.")
            node = self._lookup(arg) if arg else self._cwd_node()
            if node is None:
                raise ftplib.error_perm(f"550 {arg}: No such file or directory.")
            if isinstance(node, _Dir):
                lines = [
                    _list_line(name, child) for name, child in node.children.items()
                ]
            else:
                lines = [_list_line(arg.rsplit("/", 1)[-1], node)]
            for line in lines:
                callback(line)
            return "226 Transfer complete."
        finally:
            self._done()

    # transfers

    def _file_path(self, name: str) -> str:
        return name if name.startswith("/") else self.pwd().rstrip("/") + "/" + name

    def _abort_on_error(self, step: Callable, *args):
        try:
            return step(*args)
        except Exception:
            self._out_of_step = True
            raise

    def storbinary(
        self, cmd: str, fp, blocksize: int = 8192, callback=None, rest=None
    ) -> str:
        name = cmd.split(" ", 1)[1]
        self._command("STOR", name)
        try:
            if self.server.fail_store:
                raise ftplib.error_perm(f"553 {name}: Permission denied.")
            chunks = []
            while True:
                block = self._abort_on_error(fp.read, blocksize)
                if not block:
                    break
                chunks.append(block)
            self._cwd_node().children[name] = b"".join(chunks)
            return "226 Transfer complete."
        finally:
            self._done()

    def retrbinary(self, cmd: str, callback, blocksize: int = 8192, rest=None) -> str:
        name = cmd.split(" ", 1)[1]
        self._command("RETR", name)
        try:
            node = self._lookup(name)
            if not isinstance(node, bytes):
                raise ftplib.error_perm(f"550 {name}: No such file.")
            for offset in range(0, len(node), blocksize):
                self._abort_on_error(callback, node[offset : offset + blocksize])
            return "226 Transfer complete."
        finally:
            self._done()

    def transfercmd(self, cmd: str, rest=None) -> _FakeDataConnection:
        verb, _, name = cmd.partition(" ")
        self._command(verb, name)
        try:
            if verb == "RETR":
                node = self._lookup(name)
                if not isinstance(node, bytes):
                    raise ftplib.error_perm(f"550 {name}: No such file.")
                return _FakeDataConnection(self.server, _FakeDataFile(node))
            if verb == "STOR":
                if self.server.fail_store:
                    raise ftplib.error_perm(f"553 {name}: Permission denied.")
                path = self._file_path(name)
                data_file = _FakeDataFile(
                    on_close=lambda data: self.server.put(path, data)
                )
                return _FakeDataConnection(self.server, data_file)
            raise ftplib.error_reply(f"502 {verb} not implemented.")
        finally:
            self._done()

    def voidresp(self) -> str:
        self._command("RESP")
        try:
            if self.server.fail_completion:
                raise ftplib.error_temp("451 Transfer aborted.")
            return "226 Transfer complete."
        finally:
            self._done()

    # file management

    def delete(self, filename: str) -> str:
        self._command("DELE", filename)
        try:
            parent = self._cwd_node()
            if not isinstance(parent.children.get(filename), bytes):
                raise ftplib.error_perm(f"550 {filename}: No such file.")
            del parent.children[filename]
            return "250 File removed."
        finally:
            self._done()

    def rmd(self, dirname: str) -> str:
        self._command("RMD", dirname)
        try:
            parent = self._cwd_node()
            node = parent.children.get(dirname)
            if not isinstance(node, _Dir):
                raise ftplib.error_perm(f"550 {dirname}: No such directory.")
            if node.children:
                raise ftplib.error_perm(f"550 {dirname}: Directory not empty.")
            del parent.children[dirname]
            return "250 Directory removed."
        finally:
            self._done()

    def rename(self, fromname: str, toname: str) -> str:
        self._command("RNFR", fromname)
        try:
            node = self.server.node(fromname)
            if node is None:
                raise ftplib.error_perm(f"550 {fromname}: No such file.")
            from_parent = self.server.node(fromname.rsplit("/", 1)[0] or "/")
            to_parent = self.server.node(toname.rsplit("/", 1)[0] or "/")
            if not isinstance(to_parent, _Dir):
                raise ftplib.error_perm(f"550 {toname}: No such directory.")
            del from_parent.children[fromname.rsplit("/", 1)[1]]
            to_parent.children[toname.rsplit("/", 1)[1]] = node
            return "250 Rename successful."
        finally:
            self._done()


class ManualScheduler:
    """Keepalive scheduler whose tasks only run when the test says so."""

    class Handle:
        def __init__(self, task, initial_delay, fixed_delay):
            self.task = task
            self.initial_delay = initial_delay
            self.fixed_delay = fixed_delay
            self.cancelled = False

        def cancel(self) -> None:
            self.cancelled = True

    def __init__(self):
        self.handles: list[ManualScheduler.Handle] = []

    def schedule(self, task, initial_delay, fixed_delay):
        handle = ManualScheduler.Handle(task, initial_delay, fixed_delay)
        self.handles.append(handle)
        return handle

    def run_pending(self) -> None:
        for handle in self.handles:
            if not handle.cancelled:
                handle.task()


@pytest.fixture
def fake_server() -> FakeFTPServer:
    return FakeFTPServer()


@pytest.fixture
def manual_scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def ftp_config(tmp_path: Path) -> FTPConfig:
    return FTPConfig(
        host="ftp.example.com",
        username=FTP_USERNAME,
        password=FTP_PASSWORD,
        connect_timeout=10,
        keepalive_interval=5,
        temporary_file_directory=str(tmp_path / "buffers"),
        copy_memory_buffer_size=16,
    )


@pytest.fixture
def handler(
    ftp_config: FTPConfig,
    fake_server: FakeFTPServer,
    manual_scheduler: ManualScheduler,
) -> Generator[FTPHandler, None, None]:
    """A started handler connected to the in-memory fake server."""
    ftp_handler = FTPHandler(
        ftp_config, client_factory=fake_server.client, scheduler=manual_scheduler
    )
    ftp_handler.start()
    yield ftp_handler
    ftp_handler.stop()


@pytest.fixture(scope="module")
def ftp_server(
    tmp_path_factory: pytest.TempPathFactory,
) -> Generator[dict, None, None]:
    """Start a real FTP server using pyftpdlib on a background thread."""
    root = tmp_path_factory.mktemp("ftp_root")
    authorizer = DummyAuthorizer()
    authorizer.add_user(FTP_USERNAME, FTP_PASSWORD, str(root), perm="elradfmwMT")

    handler_cls = type(
        "TestFTPHandler", (PyFTPDHandler,), {"authorizer": authorizer}
    )
    server = FTPServer(("127.0.0.1", 0), handler_cls)
    port = server.socket.getsockname()[1]

    server_thread = threading.Thread(target=server.serve_forever, daemon=True)
    server_thread.start()
    time.sleep(0.1)

    yield {"host": "127.0.0.1", "port": port, "root": root}

    server.close_all()


@pytest.fixture
def live_config(ftp_server: dict, tmp_path: Path) -> FTPConfig:
    return FTPConfig(
        host=ftp_server["host"],
        port=ftp_server["port"],
        username=FTP_USERNAME,
        password=FTP_PASSWORD,
        connect_timeout=10,
        keepalive_interval=5,
        temporary_file_directory=str(tmp_path / "buffers"),
        copy_memory_buffer_size=1024,
    )


@pytest.fixture
def live_handler(live_config: FTPConfig) -> Generator[FTPHandler, None, None]:
    """A started handler connected to the pyftpdlib server."""
    with FTPHandler(live_config) as ftp_handler:
        yield ftp_handler
