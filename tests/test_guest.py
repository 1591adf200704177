from types import SimpleNamespace
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from pyVmomi import vim

from core.errors import GuestExecFailed, GuestExecTimeout
from core.guest import (
    DEFAULT_GUEST_ENV,
    INIT_LOG,
    PORT_MARKER,
    GuestCommandRunner,
    build_post_configuration_script,
    port_probe_script,
    shell_arguments,
    wait_for_guest_nics,
    wait_for_guest_tools,
)
from core.network import NetworkConfig
from tests.fakes import make_vm


class Clock:
    """Monotonic clock advancing one second per reading."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


@pytest.fixture(autouse=True)
def fake_time():
    with patch("core.guest.time.sleep") as sleep, patch(
        "core.guest.time.monotonic", new=Clock()
    ):
        yield sleep


@pytest.fixture
def content():
    return MagicMock()


@pytest.fixture
def process_manager(content):
    manager = content.guestOperationsManager.processManager
    manager.StartProgramInGuest.return_value = 4242
    return manager


@pytest.fixture
def runner(content):
    return GuestCommandRunner(content, username="root", password="s3cret", timeout=10)


def _exited(code):
    return [SimpleNamespace(pid=4242, exitCode=code)]


RUNNING = [SimpleNamespace(pid=4242, exitCode=None)]


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------


class TestPostConfigurationScript:
    def test_one_ifcfg_file_per_network(self):
        script = build_post_configuration_script(
            "web-01",
            [
                NetworkConfig("backend", "Network adapter", "generated"),
                NetworkConfig("dmz", "Network adapter", "manual"),
            ],
        )
        assert script.startswith("rm -f /etc/sysconfig/network-scripts/ifcfg-eth*;")
        assert (
            "echo 'DEVICE=eth0\nTYPE=Ethernet\nONBOOT=yes\nNM_CONTROLLED=yes\nBOOTPROTO=dhcp' "
            "> /etc/sysconfig/network-scripts/ifcfg-eth0;" in script
        )
        assert "BOOTPROTO=none' > /etc/sysconfig/network-scripts/ifcfg-eth1;" in script
        assert "ifcfg-eth2" not in script

    def test_hostname_and_volume_growth(self):
        script = build_post_configuration_script("web-01", [])
        assert 'sed -i "/HOSTNAME/d" /etc/sysconfig/network;' in script
        assert 'echo "HOSTNAME=web-01" >> /etc/sysconfig/network;' in script
        assert "hostname web-01;" in script
        assert f"\npvcreate /dev/sdb1 >> {INIT_LOG} 2>&1;" in script
        assert f"\nvgextend VolGroup /dev/sdb1 >> {INIT_LOG} 2>&1;" in script
        assert "alloc=\\$7" in script
        assert f"| xargs lvextend /dev/VolGroup/lv_root >> {INIT_LOG} 2>&1;" in script
        assert f"\nresize2fs /dev/VolGroup/lv_root >> {INIT_LOG} 2>&1;" in script
        assert "\nservice network reload;" in script
        assert script.endswith("\nrm -f /tmp/fdisk.sh;\nrm -f /tmp/volgroup;")

    def test_init_steps_log_to_node_init_log(self):
        script = build_post_configuration_script("web-01", [])
        assert INIT_LOG == "/tmp/node-init.log"
        assert script.count(">> /tmp/node-init.log 2>&1;") == 6

    def test_fdisk_answers(self):
        script = build_post_configuration_script("web-01", [])
        assert "\necho 'fdisk /dev/sdb <<EOF\np\nn\np\n1\n\n\nt\n8e\nw\nEOF' > /tmp/fdisk.sh;" in script

    def test_deterministic(self):
        configs = [NetworkConfig("backend", "Network adapter", "generated")]
        assert build_post_configuration_script("db-01", configs) == build_post_configuration_script(
            "db-01", configs
        )


def test_shell_arguments():
    assert shell_arguments("uptime") == '-c "uptime"'


def test_port_probe_script():
    assert port_probe_script(22) == f"netstat -nat | grep LIST | grep -q ':22 ' && touch {PORT_MARKER}"


# ---------------------------------------------------------------------------
# GuestCommandRunner
# ---------------------------------------------------------------------------


class TestRunner:
    def test_credentials(self, runner):
        auth = runner.credentials()
        assert isinstance(auth, vim.vm.guest.NamePasswordAuthentication)
        assert auth.username == "root"
        assert auth.password == "s3cret"
        assert auth.interactiveSession is False

    def test_start_builds_program_spec(self, runner, process_manager):
        vm = make_vm("web-01")
        assert runner.start(vm, "uptime") == 4242

        kwargs = process_manager.StartProgramInGuest.call_args.kwargs
        assert kwargs["vm"] is vm
        assert kwargs["spec"].programPath == "/bin/sh"
        assert kwargs["spec"].arguments == '-c "uptime"'
        assert list(kwargs["spec"].envVariables) == DEFAULT_GUEST_ENV

    def test_start_with_custom_env(self, runner, process_manager):
        runner.start(make_vm("web-01"), "env", env=["FOO=bar"])
        spec = process_manager.StartProgramInGuest.call_args.kwargs["spec"]
        assert list(spec.envVariables) == ["FOO=bar"]

    def test_run_script_polls_until_exit(self, runner, process_manager, fake_time):
        process_manager.ListProcessesInGuest.side_effect = [RUNNING, RUNNING, _exited(0)]
        assert runner.run_script(make_vm("web-01"), "true") == 0
        assert process_manager.ListProcessesInGuest.call_count == 3
        assert fake_time.call_count == 2

    def test_run_script_non_zero_exit(self, runner, process_manager):
        process_manager.ListProcessesInGuest.return_value = _exited(3)
        with pytest.raises(GuestExecFailed) as excinfo:
            runner.run_script(make_vm("web-01"), "false")
        assert excinfo.value.exit_code == 3
        assert "web-01" in excinfo.value.detail

    def test_execute_returns_non_zero_exit(self, runner, process_manager):
        process_manager.ListProcessesInGuest.return_value = _exited(1)
        assert runner.execute(make_vm("web-01"), "false") == 1

    def test_wait_times_out(self, runner, process_manager):
        process_manager.ListProcessesInGuest.return_value = RUNNING
        with pytest.raises(GuestExecTimeout):
            runner.run_script(make_vm("web-01"), "sleep 3600")

    def test_guest_fault_propagates(self, runner, process_manager):
        process_manager.StartProgramInGuest.side_effect = vim.fault.InvalidGuestLogin(msg="bad login")
        with pytest.raises(vim.fault.InvalidGuestLogin):
            runner.run_script(make_vm("web-01"), "true")

    def test_guest_file_exists(self, runner, content):
        vm = make_vm("web-01")
        assert runner.guest_file_exists(vm, PORT_MARKER) is True

        content.guestOperationsManager.fileManager.InitiateFileTransferFromGuest.side_effect = (
            vim.fault.FileNotFound(file=PORT_MARKER)
        )
        assert runner.guest_file_exists(vm, PORT_MARKER) is False

    def test_wait_for_port(self, runner, process_manager, content):
        file_manager = content.guestOperationsManager.fileManager
        file_manager.InitiateFileTransferFromGuest.side_effect = [
            vim.fault.FileNotFound(file=PORT_MARKER),
            None,
        ]
        process_manager.ListProcessesInGuest.return_value = _exited(0)

        runner.wait_for_port(make_vm("web-01"), 22, timeout=60)

        assert process_manager.StartProgramInGuest.call_count == 2
        spec = process_manager.StartProgramInGuest.call_args.kwargs["spec"]
        assert "':22 '" in spec.arguments

    def test_wait_for_port_times_out(self, runner, process_manager):
        process_manager.ListProcessesInGuest.return_value = _exited(1)
        with pytest.raises(GuestExecTimeout, match="Port 8080"):
            runner.wait_for_port(make_vm("web-01"), 8080, timeout=5)


# ---------------------------------------------------------------------------
# Advisory waits
# ---------------------------------------------------------------------------


class TestGuestWaits:
    def test_tools_running(self):
        assert wait_for_guest_tools(make_vm("web-01"), timeout=10) is True

    def test_tools_timeout_is_not_an_error(self):
        vm = make_vm("web-01")
        vm.guest.toolsRunningStatus = "guestToolsNotRunning"
        assert wait_for_guest_tools(vm, timeout=5) is False

    def test_tools_become_ready(self, fake_time):
        vm = make_vm("web-01")
        vm.guest.toolsRunningStatus = "guestToolsNotRunning"

        def _start_tools(_):
            vm.guest.toolsRunningStatus = "guestToolsRunning"

        fake_time.side_effect = _start_tools
        assert wait_for_guest_tools(vm, timeout=100) is True
        assert fake_time.call_count == 1

    def test_nics_reported(self):
        vm = make_vm("web-01")
        vm.guest.net = [SimpleNamespace(network="backend", ipAddress=["10.0.0.10"])]
        assert [n.network for n in wait_for_guest_nics(vm, timeout=10)] == ["backend"]

    def test_nics_read_fault_is_not_an_error(self):
        vm = MagicMock()
        vm.name = "web-01"
        type(vm.guest).net = PropertyMock(side_effect=vim.fault.NotAuthenticated(msg="expired"))
        assert wait_for_guest_nics(vm, timeout=5) == []

    def test_nics_timeout(self):
        vm = make_vm("web-01")
        vm.guest.net = []
        assert wait_for_guest_nics(vm, timeout=5) == []
