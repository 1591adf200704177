from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from pyVmomi import vim

from core.template_lock import TemplateLockRegistry
from tests.fakes import FakeSession


@pytest.fixture
def inventory():
    """Managed objects per vim type, as returned by container views."""
    return {
        vim.VirtualMachine: [],
        vim.HostSystem: [],
        vim.ResourcePool: [],
    }


@pytest.fixture
def content(inventory):
    content = MagicMock()

    def _container(folder, types, recursive):
        view = MagicMock()
        view.view = list(inventory.get(types[0], []))
        return view

    content.viewManager.CreateContainerView.side_effect = _container
    content.customFieldsManager.field = []
    return content


@pytest.fixture
def session_factory(content):
    sessions = []

    def _factory():
        session = FakeSession(content)
        sessions.append(session)
        return session

    _factory.sessions = sessions
    return _factory


@pytest.fixture(autouse=True)
def _reset_template_locks():
    TemplateLockRegistry.clear()
    yield
    TemplateLockRegistry.clear()
