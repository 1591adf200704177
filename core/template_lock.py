from threading import Lock
from weakref import WeakValueDictionary


class TemplateLockRegistry:
    """
    One lock per VM for flipping its template flag.

    - Only the read-modify-write of config.template is guarded.
    - Locks are keyed by the VM's managed object id, so flips on different
      VMs never wait on each other.
    - An entry lives only while some caller holds its lock object.
    """

    _locks: "WeakValueDictionary[str, Lock]" = WeakValueDictionary()
    _lock: Lock = Lock()

    @classmethod
    def for_vm(cls, vm_id: str) -> Lock:
        with cls._lock:
            lock = cls._locks.get(vm_id)
            if lock is None:
                lock = Lock()
                cls._locks[vm_id] = lock
            return lock

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._locks.clear()
