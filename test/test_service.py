import subprocess
import pytest
from unittest import mock

from FedoraCAC.exceptions import FedoraCACCommandFailed
from FedoraCAC.models import service
from FedoraCAC.models.service import SmartCardService
from FedoraCAC.models.workspace import Privilege


def _completed(returncode=0):
    return subprocess.CompletedProcess([], returncode, "", "")


@pytest.fixture()
def svc():
    return SmartCardService(privilege=Privilege(use_sudo=False))


def test_enable_verifies_unit(svc):
    with mock.patch.object(service, "run",
                           return_value=_completed()) as run:
        svc.enable()
    cmds = [c.args[0] for c in run.call_args_list]
    assert cmds == [["systemctl", "enable", "--now", "pcscd.socket"],
                    ["systemctl", "is-active", "pcscd.socket"],
                    ["systemctl", "is-enabled", "pcscd.socket"]]


def test_enable_failure_raises(svc):
    with mock.patch.object(service, "run", side_effect=FedoraCACCommandFailed(
            "systemctl enable --now pcscd.socket", 1)):
        with pytest.raises(FedoraCACCommandFailed):
            svc.enable()


def test_disable_failure_not_fatal(svc):
    with mock.patch.object(service, "run", return_value=_completed(5)):
        assert svc.disable() is False


def test_disable_with_sudo():
    svc = SmartCardService("pcscd.socket", Privilege(use_sudo=True))
    with mock.patch.object(service, "run",
                           return_value=_completed()) as run, \
            mock.patch.object(Privilege, "elevate"):
        assert svc.disable()
    run.assert_called_once_with(
        ["sudo", "systemctl", "disable", "--now", "pcscd.socket"],
        check=False)
