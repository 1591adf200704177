from unittest.mock import MagicMock

import pytest
from pyVmomi import vim

from core.errors import NodeNotFound, ProviderUnavailable
from core.session import (
    VSphereSession,
    best_datastore,
    find_all,
    find_by_name,
    find_resource_pool,
    find_vm,
    is_template,
    target_host,
)
from tests.fakes import make_host, make_pool, make_vm


class TestVSphereSession:
    def test_connects_and_disconnects(self):
        service_instance = MagicMock()
        disconnect = MagicMock()

        with VSphereSession(connector=lambda: service_instance, disconnector=disconnect) as session:
            assert session.content is service_instance.RetrieveContent.return_value

        disconnect.assert_called_once_with(service_instance)

    def test_disconnects_when_block_fails(self):
        disconnect = MagicMock()
        with pytest.raises(NodeNotFound):
            with VSphereSession(connector=MagicMock, disconnector=disconnect):
                raise NodeNotFound("web-01")
        disconnect.assert_called_once()

    def test_disconnect_error_does_not_mask_result(self):
        disconnect = MagicMock(side_effect=OSError("socket closed"))
        with pytest.raises(NodeNotFound):
            with VSphereSession(connector=MagicMock, disconnector=disconnect):
                raise NodeNotFound("web-01")

    def test_login_fault(self):
        connector = MagicMock(side_effect=vim.fault.InvalidLogin(msg="bad credentials"))
        with pytest.raises(ProviderUnavailable):
            with VSphereSession(connector=connector, disconnector=MagicMock()):
                pass

    def test_unreachable_endpoint(self):
        connector = MagicMock(side_effect=ConnectionRefusedError("refused"))
        with pytest.raises(ProviderUnavailable):
            with VSphereSession(connector=connector, disconnector=MagicMock()):
                pass

    def test_failed_content_retrieval_disconnects(self):
        service_instance = MagicMock()
        service_instance.RetrieveContent.side_effect = vim.fault.NotAuthenticated(msg="session expired")
        disconnect = MagicMock()

        with pytest.raises(ProviderUnavailable):
            with VSphereSession(connector=lambda: service_instance, disconnector=disconnect):
                pass

        disconnect.assert_called_once_with(service_instance)

    def test_no_service_instance(self):
        with pytest.raises(ProviderUnavailable):
            with VSphereSession(connector=lambda: None, disconnector=MagicMock()):
                pass


class TestLookups:
    def test_find_all_destroys_view(self, content, inventory):
        inventory[vim.VirtualMachine].append(make_vm("web-01"))
        views = []
        original = content.viewManager.CreateContainerView.side_effect

        def _tracking(*args):
            view = original(*args)
            views.append(view)
            return view

        content.viewManager.CreateContainerView.side_effect = _tracking

        assert [vm.name for vm in find_all(content, vim.VirtualMachine)] == ["web-01"]
        views[0].Destroy.assert_called_once_with()

    def test_find_by_name(self, content, inventory):
        inventory[vim.VirtualMachine].extend([make_vm("web-01"), make_vm("db-01")])
        assert find_by_name(content, vim.VirtualMachine, "db-01").name == "db-01"
        assert find_by_name(content, vim.VirtualMachine, "nope") is None

    def test_find_vm_missing(self, content):
        with pytest.raises(NodeNotFound):
            find_vm(content, "web-01")

    def test_is_template(self):
        assert is_template(make_vm("centos-7", template=True))
        assert not is_template(make_vm("web-01"))
        vm = make_vm("web-01")
        vm.config = None
        assert not is_template(vm)

    def test_target_host_by_name(self, content, inventory):
        inventory[vim.HostSystem].extend([make_host("esx-01"), make_host("esx-02")])
        assert target_host(content, "esx-02").name == "esx-02"
        assert target_host(content).name == "esx-01"
        with pytest.raises(ProviderUnavailable):
            target_host(content, "esx-09")

    def test_target_host_empty_inventory(self, content):
        with pytest.raises(ProviderUnavailable):
            target_host(content)

    def test_best_datastore(self):
        small, large = MagicMock(), MagicMock()
        small.summary.freeSpace = 10
        large.summary.freeSpace = 1000
        assert best_datastore(make_host(datastores=[small, large])) is large

    def test_best_datastore_all_full(self):
        full = MagicMock()
        full.summary.freeSpace = 0
        with pytest.raises(ProviderUnavailable):
            best_datastore(make_host(datastores=[full]))


class TestFindResourcePool:
    def test_first_pool_owning_the_host(self, content, inventory):
        esx1, esx2 = make_host("esx-01"), make_host("esx-02")
        other = make_pool([esx1])
        first = make_pool([esx2])
        second = make_pool([esx1, esx2])
        inventory[vim.ResourcePool].extend([other, first, second])

        assert find_resource_pool(content, "esx-02") is first

    def test_pool_without_owner(self, content, inventory):
        pool = make_pool([])
        pool.owner = None
        inventory[vim.ResourcePool].append(pool)
        assert find_resource_pool(content, "esx-01") is None

    def test_fault_is_swallowed(self, content):
        content.viewManager.CreateContainerView.side_effect = vim.fault.NoPermission(msg="denied")
        assert find_resource_pool(content, "esx-01") is None
