import os
from pathlib import Path

# -----------------------------
# Base paths
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent  # project root: vsphere-node-manager/

# -----------------------------
# Logging
# -----------------------------
LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "log")))
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = LOG_DIR / "vsphere-manager.log"

# -----------------------------
# vSphere endpoint
# -----------------------------
VSPHERE_HOST = os.getenv("VSPHERE_HOST", "vcenter.local")
VSPHERE_PORT = int(os.getenv("VSPHERE_PORT", "443"))
VSPHERE_USER = os.getenv("VSPHERE_USER", "administrator@vsphere.local")
VSPHERE_PASSWORD = os.getenv("VSPHERE_PASSWORD", "")
VSPHERE_INSECURE = os.getenv("VSPHERE_INSECURE", "true").lower() == "true"

# ESXi host new nodes are placed on; empty means the first host in inventory
VSPHERE_TARGET_HOST = os.getenv("VSPHERE_TARGET_HOST", "")

# "full" copies every disk, "linked" shares the template's current snapshot
VSPHERE_CLONING = os.getenv("VSPHERE_CLONING", "full").lower()

# -----------------------------
# Node defaults
# -----------------------------
DEFAULT_MEMORY_MB = int(os.getenv("VM_DEFAULT_MEMORY_MB", "1024"))
DEFAULT_CORES = int(os.getenv("VM_DEFAULT_CORES", "1"))

NODE_NAME_MIN_LENGTH = int(os.getenv("NODE_NAME_MIN_LENGTH", "2"))
NODE_NAME_MAX_LENGTH = int(os.getenv("NODE_NAME_MAX_LENGTH", "15"))

# Custom fields holding node metadata
GROUP_FIELD_NAME = os.getenv("GROUP_FIELD_NAME", "node-group")
TAGS_FIELD_NAME = os.getenv("TAGS_FIELD_NAME", "node-tags")

# -----------------------------
# Guest access
# -----------------------------
# every provisioned node is expected to accept this pre-shared login
VM_LOGIN_USER = os.getenv("VM_LOGIN_USER", "root")
VM_INIT_PASSWORD = os.getenv("VM_INIT_PASSWORD", "")

# -----------------------------
# Waits / polling (seconds)
# -----------------------------
TASK_POLL_INTERVAL = float(os.getenv("TASK_POLL_INTERVAL", "1"))

GUEST_TOOLS_TIMEOUT = int(os.getenv("GUEST_TOOLS_TIMEOUT", str(2 * 60 * 60)))
POST_CONFIG_TOOLS_TIMEOUT = int(os.getenv("POST_CONFIG_TOOLS_TIMEOUT", "100"))
GUEST_NIC_TIMEOUT = int(os.getenv("GUEST_NIC_TIMEOUT", str(5 * 60)))
GUEST_WAIT_INTERVAL = float(os.getenv("GUEST_WAIT_INTERVAL", "5"))

GUEST_EXEC_POLL_INTERVAL = float(os.getenv("GUEST_EXEC_POLL_INTERVAL", "1"))
GUEST_EXEC_TIMEOUT = int(os.getenv("GUEST_EXEC_TIMEOUT", str(30 * 60)))
GUEST_PORT_TIMEOUT = int(os.getenv("GUEST_PORT_TIMEOUT", str(10 * 60)))

# -----------------------------
# Metrics / monitoring
# -----------------------------
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() == "true"
METRICS_REFRESH_INTERVAL = int(os.getenv("METRICS_REFRESH_INTERVAL", "30"))

# -----------------------------
# Misc
# -----------------------------
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
