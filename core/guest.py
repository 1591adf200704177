import time
from typing import List, Optional, Sequence

from pyVmomi import vim, vmodl

from config.settings import (
    GUEST_EXEC_POLL_INTERVAL,
    GUEST_EXEC_TIMEOUT,
    GUEST_NIC_TIMEOUT,
    GUEST_PORT_TIMEOUT,
    GUEST_WAIT_INTERVAL,
    VM_INIT_PASSWORD,
    VM_LOGIN_USER,
)
from core.errors import GuestExecFailed, GuestExecTimeout
from core.logger import log_error, log_event
from core.metrics import record_guest_command
from core.network import NetworkConfig, boot_proto

SHELL = "/bin/sh"
DEFAULT_GUEST_ENV = [
    "PATH=/usr/local/sbin:/usr/local/bin:/sbin:/bin:/usr/sbin:/usr/bin:/root/bin",
    "SHELL=/bin/bash",
]
INIT_LOG = "/tmp/node-init.log"
PORT_MARKER = "/tmp/portopen.txt"
TOOLS_RUNNING = "guestToolsRunning"


# ----------------------------------------------------------------------
# Guest scripts
# ----------------------------------------------------------------------
def shell_arguments(script: str) -> str:
    return f'-c "{script}"'


def build_post_configuration_script(name: str, network_configs: Sequence[NetworkConfig]) -> str:
    """
    Shell script run once inside a fresh clone.

    Rewrites one ifcfg-ethN file per network, sets the hostname, then grows
    the root logical volume onto the second disk (/dev/sdb). Steps are
    chained with ';' so only the exit code of the whole run is checked.
    """
    parts: List[str] = ["rm -f /etc/sysconfig/network-scripts/ifcfg-eth*;"]

    for index, config in enumerate(network_configs):
        parts.append(
            f"echo 'DEVICE=eth{index}"
            "\nTYPE=Ethernet"
            "\nONBOOT=yes"
            "\nNM_CONTROLLED=yes"
            f"\nBOOTPROTO={boot_proto(config.address_type)}' "
            f"> /etc/sysconfig/network-scripts/ifcfg-eth{index};"
        )

    parts.append('sed -i "/HOSTNAME/d" /etc/sysconfig/network;')
    parts.append(f'echo "HOSTNAME={name}" >> /etc/sysconfig/network;')
    parts.append(f"hostname {name};")

    parts.append(
        "\necho 'fdisk /dev/sdb <<EOF"
        "\np"
        "\nn"
        "\np"
        "\n1"
        "\n"
        "\n"
        "\nt"
        "\n8e"
        "\nw"
        "\nEOF' > /tmp/fdisk.sh;"
    )
    parts.append(f"\nchmod 0700 /tmp/fdisk.sh >> {INIT_LOG} 2>&1;")
    parts.append(f"\n/tmp/fdisk.sh >> {INIT_LOG} 2>&1;")

    parts.append(f"\npvcreate /dev/sdb1 >> {INIT_LOG} 2>&1;")
    parts.append(f"\nvgextend VolGroup /dev/sdb1 >> {INIT_LOG} 2>&1;")
    parts.append("\nvgdisplay VolGroup >> /tmp/volgroup 2>&1;")
    parts.append(
        "\nawk 'BEGIN { free=0; alloc=0; } /Alloc/ { alloc=\\$7 } /Free/ { free=\\$7 } "
        'END { print \\"-L+\\" free - alloc \\"G\\" }\' /tmp/volgroup '
        f"| xargs lvextend /dev/VolGroup/lv_root >> {INIT_LOG} 2>&1;"
    )
    parts.append(f"\nresize2fs /dev/VolGroup/lv_root >> {INIT_LOG} 2>&1;")

    parts.append("\nmkdir -p ~/.ssh;")
    parts.append("\nrestorecon -FRvv ~/.ssh;")

    parts.append("\nservice network reload;")

    parts.append("\nrm -f /tmp/fdisk.sh;")
    parts.append("\nrm -f /tmp/volgroup;")

    return "".join(parts)


def port_probe_script(port: int) -> str:
    return f"netstat -nat | grep LIST | grep -q ':{port} ' && touch {PORT_MARKER}"


# ----------------------------------------------------------------------
# Guest operations
# ----------------------------------------------------------------------
class GuestCommandRunner:
    """
    Synchronous shell commands inside a guest, through VMware Tools.

    Every command authenticates with the pre-shared login, starts
    /bin/sh -c "<script>" and polls the guest process table until the
    process reports an exit code.
    """

    def __init__(
        self,
        content,
        username: str = VM_LOGIN_USER,
        password: str = VM_INIT_PASSWORD,
        poll_interval: float = GUEST_EXEC_POLL_INTERVAL,
        timeout: float = GUEST_EXEC_TIMEOUT,
    ) -> None:
        self.content = content
        self.username = username
        self.password = password
        self.poll_interval = poll_interval
        self.timeout = timeout

    @property
    def _process_manager(self):
        return self.content.guestOperationsManager.processManager

    @property
    def _file_manager(self):
        return self.content.guestOperationsManager.fileManager

    def credentials(self) -> vim.vm.guest.NamePasswordAuthentication:
        return vim.vm.guest.NamePasswordAuthentication(
            username=self.username,
            password=self.password,
            interactiveSession=False,
        )

    def start(self, vm, script: str, env: Optional[List[str]] = None) -> int:
        spec = vim.vm.guest.ProcessManager.ProgramSpec(
            programPath=SHELL,
            arguments=shell_arguments(script),
            envVariables=list(env if env is not None else DEFAULT_GUEST_ENV),
        )
        pid = self._process_manager.StartProgramInGuest(
            vm=vm, auth=self.credentials(), spec=spec
        )
        log_event(f"[guest] Started {SHELL} in '{vm.name}' with pid={pid}")
        return pid

    def wait_for_exit(self, vm, pid: int, timeout: Optional[float] = None) -> int:
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            processes = self._process_manager.ListProcessesInGuest(
                vm=vm, auth=self.credentials(), pids=[pid]
            )
            if processes and processes[0].exitCode is not None:
                return processes[0].exitCode
            if time.monotonic() >= deadline:
                record_guest_command("timeout")
                raise GuestExecTimeout(
                    f"Guest process {pid} on '{vm.name}' still running after {timeout}s"
                )
            time.sleep(self.poll_interval)

    def execute(
        self,
        vm,
        script: str,
        env: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Run 'script' and return its exit code, whatever it is."""
        try:
            pid = self.start(vm, script, env)
            return self.wait_for_exit(vm, pid, timeout)
        except vmodl.MethodFault as e:
            record_guest_command("error")
            log_error(f"[guest] Guest operation on '{vm.name}' failed: {e.msg}", e)
            raise

    def run_script(
        self,
        vm,
        script: str,
        env: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Run 'script' and require a zero exit code.

        Raises GuestExecFailed on a non-zero exit, GuestExecTimeout when the
        process does not finish in time.
        """
        exit_code = self.execute(vm, script, env, timeout)
        if exit_code != 0:
            record_guest_command("failed")
            log_error(f"[guest] Script on '{vm.name}' exited with code {exit_code}")
            raise GuestExecFailed(vm.name, exit_code)
        record_guest_command("success")
        log_event(f"[guest] Script on '{vm.name}' finished successfully")
        return exit_code

    def guest_file_exists(self, vm, path: str) -> bool:
        try:
            self._file_manager.InitiateFileTransferFromGuest(
                vm=vm, auth=self.credentials(), guestFilePath=path
            )
            return True
        except vim.fault.FileNotFound:
            return False

    def wait_for_port(
        self,
        vm,
        port: int,
        timeout: float = GUEST_PORT_TIMEOUT,
        interval: float = GUEST_WAIT_INTERVAL,
    ) -> None:
        """
        Block until something listens on TCP 'port' inside the guest.
        """
        deadline = time.monotonic() + timeout
        script = port_probe_script(port)
        while True:
            exit_code = self.execute(vm, script)
            if exit_code == 0 and self.guest_file_exists(vm, PORT_MARKER):
                log_event(f"[guest] Port {port} is open on '{vm.name}'")
                return
            if time.monotonic() >= deadline:
                raise GuestExecTimeout(f"Port {port} on '{vm.name}' not open after {timeout}s")
            time.sleep(interval)


# ----------------------------------------------------------------------
# Advisory waits
# ----------------------------------------------------------------------
def wait_for_guest_tools(vm, timeout: float, interval: float = GUEST_WAIT_INTERVAL) -> bool:
    """
    Wait until VMware Tools report running. Never raises: False on timeout.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            if vm.guest is not None and vm.guest.toolsRunningStatus == TOOLS_RUNNING:
                return True
        except vmodl.MethodFault as e:
            log_event(f"[guest] Could not read tools status of '{vm.name}': {e.msg}")
        if time.monotonic() >= deadline:
            log_event(f"[guest] VMware Tools not running on '{vm.name}' after {timeout}s")
            return False
        time.sleep(interval)


def wait_for_guest_nics(vm, timeout: float = GUEST_NIC_TIMEOUT, interval: float = GUEST_WAIT_INTERVAL) -> list:
    """
    Guest NIC info once the tools report it; empty list on timeout.
    """
    deadline = time.monotonic() + timeout
    while True:
        nics = []
        try:
            if vm.guest is not None:
                nics = list(vm.guest.net or [])
        except vmodl.MethodFault as e:
            log_event(f"[guest] Could not read guest NICs of '{vm.name}': {e.msg}")
        if nics:
            return nics
        if time.monotonic() >= deadline:
            log_event(f"[guest] No guest NIC info for '{vm.name}' after {timeout}s")
            return []
        time.sleep(interval)
