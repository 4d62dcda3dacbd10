import socket
from unittest.mock import patch

import pytest

from lifecycle.errors import BindError
from lifecycle.port_manager import PortManager


@pytest.fixture
def port_manager():
    return PortManager()


def test_instance_is_singleton():
    assert PortManager.instance() is PortManager.instance()


def test_bind_ephemeral_port(port_manager):
    sock = port_manager.bind("127.0.0.1", 0)
    try:
        host, port = sock.getsockname()
        assert host == "127.0.0.1"
        assert port != 0
        assert port_manager.is_port_in_use(port, "127.0.0.1")
    finally:
        sock.close()


def test_bind_busy_port_raises_bind_error(port_manager, capsys):
    blocker = socket.socket()
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]

    try:
        with patch.object(port_manager, "find_process_on_port", return_value=4242) as finder:
            with pytest.raises(BindError) as excinfo:
                port_manager.bind("127.0.0.1", port)

        finder.assert_called_once_with(port)
        error = excinfo.value
        assert error.port == port
        assert error.host == "127.0.0.1"
        assert error.pid == 4242
        assert "PID 4242" in str(error)
        # the caller reports the failure, bind itself logs no error
        assert capsys.readouterr().err == ""
    finally:
        blocker.close()


def test_port_free_after_close(port_manager):
    sock = port_manager.bind("127.0.0.1", 0)
    port = sock.getsockname()[1]
    sock.close()

    assert not port_manager.is_port_in_use(port, "127.0.0.1")


def test_find_process_without_tools_returns_none(port_manager):
    with patch("lifecycle.port_manager.subprocess.run", side_effect=FileNotFoundError):
        assert port_manager.find_process_on_port(3000) is None
