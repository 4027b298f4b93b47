from pathlib import Path
from unittest.mock import MagicMock

import paramiko
import pytest

from terrafarm.exceptions import ProbeError
from terrafarm.nodes import (
    NodeInfo,
    NodeProber,
    NodeState,
    active_node_names,
    node_arch,
    summarize,
)
from terrafarm.preferences import Preferences
from terrafarm.terraform.state import NodeRecord
from tests.conftest import write_tfstate

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class FakeSSHClient:
    """paramiko.SSHClient stand-in driven by a per-IP behavior table.

    Behaviors: an int is the command exit status, an exception instance is
    raised from connect, None is a command that never exits.
    """

    def __init__(self, behaviors: dict[str, int | Exception | None]) -> None:
        self.behaviors = behaviors
        self.commands: list[str] = []
        self.connected_as: str | None = None
        self.closed = False
        self.host = ""

    def set_missing_host_key_policy(self, policy) -> None:
        pass

    def connect(self, hostname, port, username, pkey, timeout, banner_timeout, auth_timeout, **kwargs) -> None:
        self.host = hostname
        self.connected_as = username
        self.timeouts = (timeout, banner_timeout, auth_timeout)
        behavior = self.behaviors[hostname]
        if isinstance(behavior, Exception):
            raise behavior

    def exec_command(self, command, timeout=None):
        self.commands.append(command)
        behavior = self.behaviors[self.host]
        stdout = MagicMock()
        stdout.channel.status_event.wait.return_value = behavior is not None
        stdout.channel.recv_exit_status.return_value = behavior
        self.exit_wait = stdout.channel.status_event.wait
        return MagicMock(), stdout, MagicMock()

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clients() -> list[FakeSSHClient]:
    return []


def make_prober(state_file: Path, behaviors: dict[str, int | Exception | None], clients: list[FakeSSHClient]) -> NodeProber:
    def factory() -> FakeSSHClient:
        client = FakeSSHClient(behaviors)
        clients.append(client)
        return client

    return NodeProber(state_file, client_factory=factory)


@pytest.fixture
def fake_key(monkeypatch: pytest.MonkeyPatch):
    key = MagicMock(spec=paramiko.PKey)
    monkeypatch.setattr("terrafarm.nodes.load_private_key", lambda path: key)
    return key


NODES = {"farm-x32": "10.0.0.1", "farm-x48": "10.0.0.2", "farm-x64": "10.0.0.3"}


class TestProbe:
    def test_aggregates_states_in_order(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        state = write_tfstate(tmp_path / "terraform.tfstate", NODES)
        behaviors = {"10.0.0.1": 0, "10.0.0.2": 1, "10.0.0.3": OSError("no route to host")}

        result = make_prober(state, behaviors, clients).probe(prefs)

        assert result == [
            NodeInfo("farm-x32", "10.0.0.1", "i386", NodeState.ACTIVE),
            NodeInfo("farm-x48", "10.0.0.2", "i686", NodeState.INACTIVE),
            NodeInfo("farm-x64", "10.0.0.3", "x86_64", NodeState.DOWN),
        ]

    def test_runs_lock_check_as_root(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        state = write_tfstate(tmp_path / "terraform.tfstate", {"farm-x64": "10.0.0.3"})

        make_prober(state, {"10.0.0.3": 1}, clients).probe(prefs)

        (client,) = clients
        assert client.connected_as == "root"
        assert client.timeouts == (1.0, 1.0, 1.0)
        assert client.commands == ["stat -c '%Y' /home/builder/.buildlock"]

    def test_clients_closed_on_every_path(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        state = write_tfstate(tmp_path / "terraform.tfstate", NODES)
        behaviors = {"10.0.0.1": 0, "10.0.0.2": paramiko.SSHException("banner"), "10.0.0.3": 1}

        make_prober(state, behaviors, clients).probe(prefs)

        assert len(clients) == 3
        assert all(c.closed for c in clients)

    def test_handshake_eof_marks_node_down(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        nodes = [NodeRecord("farm-x32", "10.0.0.1"), NodeRecord("farm-x64", "10.0.0.2")]
        behaviors = {"10.0.0.1": EOFError(), "10.0.0.2": 0}

        result = make_prober(tmp_path / "missing", behaviors, clients).probe(prefs, nodes)

        assert [n.state for n in result] == [NodeState.DOWN, NodeState.ACTIVE]

    def test_stalled_command_marks_node_down(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        nodes = [NodeRecord("farm-x64", "10.0.0.3")]

        result = make_prober(tmp_path / "missing", {"10.0.0.3": None}, clients).probe(prefs, nodes)

        assert [n.state for n in result] == [NodeState.DOWN]
        (client,) = clients
        client.exit_wait.assert_called_once_with(1.0)
        assert client.closed

    def test_explicit_node_list(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        prober = make_prober(tmp_path / "missing", {"10.0.0.9": 0}, clients)

        result = prober.probe(prefs, [NodeRecord("extra-x64", "10.0.0.9")])

        assert active_node_names(result) == ["extra-x64"]

    def test_no_nodes(self, tmp_path: Path, prefs: Preferences, clients):
        assert make_prober(tmp_path / "missing", {}, clients).probe(prefs) == []
        assert clients == []

    def test_unreadable_key(self, tmp_path: Path, prefs: Preferences, clients):
        state = write_tfstate(tmp_path / "terraform.tfstate", NODES)

        with pytest.raises(ProbeError, match="Can't load private key"):
            make_prober(state, {}, clients).probe(prefs)

    def test_malformed_state(self, tmp_path: Path, prefs: Preferences, fake_key, clients):
        state = tmp_path / "terraform.tfstate"
        state.write_text("{")

        with pytest.raises(ProbeError, match="Can't get node list"):
            make_prober(state, {}, clients).probe(prefs)


class TestHelpers:
    @pytest.mark.parametrize(
        ("name", "arch"),
        [("farm-x32", "i386"), ("farm-x48", "i686"), ("farm-x64", "x86_64"), ("other", "x86_64")],
    )
    def test_node_arch(self, name: str, arch: str):
        assert node_arch(name) == arch

    def test_summarize(self):
        nodes = [
            NodeInfo("a", "1", "x86_64", NodeState.ACTIVE),
            NodeInfo("b", "2", "x86_64", NodeState.ACTIVE),
            NodeInfo("c", "3", "x86_64", NodeState.DOWN),
        ]
        counts = summarize(nodes)
        assert counts[NodeState.ACTIVE] == 2
        assert counts[NodeState.DOWN] == 1
        assert counts[NodeState.INACTIVE] == 0

    def test_active_node_names(self):
        nodes = [
            NodeInfo("a", "1", "x86_64", NodeState.ACTIVE),
            NodeInfo("b", "2", "x86_64", NodeState.INACTIVE),
            NodeInfo("c", "3", "x86_64", NodeState.DOWN),
        ]
        assert active_node_names(nodes) == ["a"]
