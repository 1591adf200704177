class VSphereError(Exception):
    """
    Base class for every failure surfaced by the node manager.

    'status_code' is what the HTTP layer answers with; 'detail' is the
    human readable message returned to the caller.
    """

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidName(VSphereError):
    status_code = 400


class TemplateNotFound(VSphereError):
    status_code = 404

    def __init__(self, image_id: str) -> None:
        super().__init__(f"No template named '{image_id}'")
        self.image_id = image_id


class NodeNotFound(VSphereError):
    status_code = 404

    def __init__(self, name: str) -> None:
        super().__init__(f"Node '{name}' not found")
        self.name = name


class ResourcePoolNotFound(VSphereError):
    status_code = 404

    def __init__(self, host_name: str) -> None:
        super().__init__(f"No resource pool found for host '{host_name}'")
        self.host_name = host_name


class TaskFailed(VSphereError):
    status_code = 502

    def __init__(self, message: str, kind: str = "task") -> None:
        super().__init__(f"{kind} failed: {message}")
        self.message = message
        self.kind = kind


class GuestExecFailed(VSphereError):
    status_code = 502

    def __init__(self, vm_name: str, exit_code: int) -> None:
        super().__init__(f"Guest command on '{vm_name}' exited with code {exit_code}")
        self.vm_name = vm_name
        self.exit_code = exit_code


class GuestExecTimeout(VSphereError):
    status_code = 504


class ProviderUnavailable(VSphereError):
    status_code = 503


class ProviderError(VSphereError):
    """A vSphere call was rejected with a fault outside any task."""

    status_code = 502
