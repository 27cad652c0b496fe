import queue
import threading
import time

import pytest

from capture_agent_mcp.core.capability_base import DISPATCH_BREAK, CapabilityContext, CompiledFilter
from capture_agent_mcp.core.config import AgentConfig
from capture_agent_mcp.core.errors import DispatchError, FilterCompileError
from capture_agent_mcp.core.store import AnomalyLog

_BREAK = object()


class FakeHandle:
    """
    In memory CaptureHandle. Packets are fed through push() and handed to
    the callback tagged with the filter installed at dispatch time.
    """

    link_type = 1

    def __init__(self, netmask=(0x0A000000, 0xFFFFFF00), bad_filters=("bad",), fail_install=False, tag=True):
        self._q = queue.Queue()
        self.netmask = netmask
        self.bad_filters = set(bad_filters)
        self.fail_install = fail_install
        self.tag = tag
        self.installed = ""
        self.compiled = []
        self.released = []
        self.closed = False
        self.breaks = 0

    def push(self, item):
        self._q.put(item)

    def lookup_netmask(self):
        if self.netmask is None:
            raise LookupError("no address")
        return self.netmask

    def compile(self, expression, optimize, netmask):
        if expression in self.bad_filters:
            raise FilterCompileError(f"syntax error in {expression!r}")
        compiled = CompiledFilter(expression=expression, program=object())
        self.compiled.append(compiled)
        return compiled

    def install(self, compiled):
        if self.fail_install:
            raise FilterCompileError("install refused")
        self.installed = compiled.expression

    def release(self, compiled):
        self.released.append(compiled)
        compiled.program = None

    def dispatch(self, callback):
        item = self._q.get()
        if item is _BREAK:
            return DISPATCH_BREAK
        if isinstance(item, Exception):
            raise DispatchError(str(item))
        callback((item, self.installed) if self.tag else item)
        return 1

    def breakloop(self):
        self.breaks += 1
        self._q.put(_BREAK)

    def close(self):
        self.closed = True


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def fake_handle():
    return FakeHandle()


@pytest.fixture
def config(tmp_path):
    return AgentConfig(sessions_dir=tmp_path / "sessions", stop_timeout=2.0)


@pytest.fixture
def store():
    return AnomalyLog(maxlen=1_000)


@pytest.fixture
def ctx(store, config):
    messages = []
    c = CapabilityContext(store=store, config=config, log=messages.append)
    c.messages = messages
    return c


@pytest.fixture
def finished_calls():
    calls = []
    lock = threading.Lock()

    def on_finished(error):
        with lock:
            calls.append(error)

    on_finished.calls = calls
    return on_finished


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def make_handle():
    return FakeHandle
