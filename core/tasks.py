import time
from typing import Any

from pyVmomi import vim

from config.settings import TASK_POLL_INTERVAL
from core.errors import TaskFailed
from core.logger import log_error, log_event
from core.metrics import record_task


def task_error_message(task) -> str:
    """
    Best human readable message vSphere attached to a failed task.
    """
    error = task.info.error
    if error is None:
        return "unknown error"
    message = getattr(error, "localizedMessage", None) or getattr(error, "msg", None)
    return message or str(error)


def wait_for_task(task, kind: str = "task", poll_interval: float = TASK_POLL_INTERVAL) -> Any:
    """
    Block until a vSphere task is terminal.

    - success -> return task.info.result (None for most power operations)
    - error   -> raise TaskFailed carrying the provider's message

    There is no timeout and no retry here: callers decide whether a
    failed task aborts their operation.
    """
    started = time.monotonic()
    while True:
        state = task.info.state
        if state == vim.TaskInfo.State.success:
            record_task(kind, "success", time.monotonic() - started)
            log_event(f"[task] {kind} finished")
            return task.info.result
        if state == vim.TaskInfo.State.error:
            message = task_error_message(task)
            record_task(kind, "error", time.monotonic() - started)
            log_error(f"[task] {kind} failed: {message}")
            raise TaskFailed(message, kind=kind)
        time.sleep(poll_interval)
