import ftplib
from concurrent.futures import Executor, Future

import pytest

from q3_session.rcon import RConError
from q3_session.response_types import ServerStatus


class FakeTransport:
    """In memory RCon client, answers come from the attributes set by the test"""

    def __init__(self):
        self.address = None
        self.port = None
        self.password = None
        self.waiting = None
        # Results of successive test() calls, the last one repeats
        self.test_results = [True]
        self.error = RConError.NONE
        self.replies = []
        self.sent = []
        self.resent = 0
        self.info = {
            "sv_hostname": "Test server",
            "mapname": "ut4_casa",
            "g_gametype": "4",
            "version": "ioq3 1.35 urt 4.3.4",
        }
        self.status_result = ServerStatus(map_name="ut4_casa", players={})
        self.dumps = {}
        self.red = []
        self.blue = []

    def set_server(self, address, port):
        self.address = address
        self.port = port

    def set_credentials(self, password):
        self.password = password

    def set_waiting(self, waiting):
        self.waiting = waiting

    def test(self):
        if len(self.test_results) > 1:
            return self.test_results.pop(0)
        return self.test_results[0]

    def send(self, command, expect_reply=True):
        self.sent.append((command, expect_reply))

    def resend(self):
        self.resent += 1

    def get_reply(self, timeout=0):
        if self.replies:
            return self.replies.pop(0)
        return None

    def last_error(self):
        return self.error

    def server_info(self):
        return self.info

    def status(self):
        return self.status_result

    def dump_user(self, player_id):
        return self.dumps.get(player_id)

    def red_team_list(self):
        return self.red

    def blue_team_list(self):
        return self.blue


class FakeSink:
    def __init__(self):
        self.events = []
        self.commands = []
        self.routines = 0

    def call_server_event(self, session, event):
        self.events.append(event)

    def call_command(self, session, command, player_id, args):
        self.commands.append((command, player_id, args))

    def call_all_routines(self, session):
        self.routines += 1

    def event_names(self):
        return [type(event).__name__ for event in self.events]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeFTPServer:
    """Files of a fake FTP server, calling it opens a client connection"""

    def __init__(self):
        self.files = {}
        self.size_supported = True
        self.fail_retr = False
        self.retr_offsets = []
        self.connections = 0

    def __call__(self):
        return FakeFTP(self)


class FakeFTP:
    def __init__(self, server):
        self.server = server
        self.closed = False

    def connect(self, host, port, timeout=None):
        self.server.connections += 1

    def login(self, user, passwd):
        pass

    def voidcmd(self, cmd):
        return "200 Switching to Binary mode."

    def size(self, path):
        if not self.server.size_supported:
            raise ftplib.error_perm("550 SIZE not allowed in ASCII mode")
        return len(self.server.files[path])

    def retrbinary(self, cmd, callback, blocksize=8192, rest=None):
        if self.server.fail_retr:
            raise ftplib.error_temp("425 Can't open data connection")

        path = cmd.removeprefix("RETR ")
        if path not in self.server.files:
            raise ftplib.error_perm(f"550 {path}: No such file")

        self.server.retr_offsets.append(rest or 0)
        data = self.server.files[path][rest or 0 :]
        for index in range(0, len(data), blocksize):
            callback(data[index : index + blocksize])

    def storbinary(self, cmd, fp):
        self.server.files[cmd.removeprefix("STOR ")] = fp.read()

    def quit(self):
        self.closed = True

    def close(self):
        self.closed = True


class ImmediateExecutor(Executor):
    """Runs submitted work right away, so FTP fetches complete before read() polls"""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ftp_server():
    return FakeFTPServer()


@pytest.fixture
def executor():
    return ImmediateExecutor()


@pytest.fixture
def logfile(tmp_path):
    path = tmp_path / "games.log"
    path.write_bytes(b"")
    return path


def append_lines(path, *lines, newline=True):
    with open(path, "ab") as fp:
        for line in lines:
            fp.write(line.encode() + (b"\n" if newline else b""))


@pytest.fixture
def append():
    return append_lines
