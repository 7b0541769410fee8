import click
import pytest
import signal
from click.testing import CliRunner

import FedoraCAC.cli_commands as cli_cmd
from FedoraCAC.cli_commands import ReturnCode
from FedoraCAC.controller import Controller
from FedoraCAC.enums import Mode, Decision
from FedoraCAC.exceptions import (FedoraCACBundleFormatError,
                                  FedoraCACPreconditionError,
                                  FedoraCACInterrupted)
from FedoraCAC.models.reconciler import ReconciliationReport


@pytest.fixture(scope="module")
def runner():
    return CliRunner()


def fake_report():
    report = ReconciliationReport(Mode.install, 5)
    report.decision = Decision.install
    report.before, report.after = 0, 5
    return report


def test_setup_success(runner, conf_file, monkeypatch):
    monkeypatch.setattr(Controller, "setup", lambda self, ctx: fake_report())
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf_file),
                                         "--no-spinner", "setup"])

    assert result.exit_code == ReturnCode.SUCCESS.value
    assert "DoD anchors: 5 (before: 0, install)" in result.output
    assert "Test steps:" in result.output


@pytest.mark.parametrize("error", [FedoraCACBundleFormatError(),
                                   FedoraCACPreconditionError("no dnf")])
def test_setup_failure_exit_code(runner, conf_file, monkeypatch, error):
    def setup(self, ctx):
        raise error

    monkeypatch.setattr(Controller, "setup", setup)
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf_file), "setup"])

    assert result.exit_code == ReturnCode.FAILURE.value
    assert "Log:" in result.output


@pytest.mark.parametrize("error", [KeyboardInterrupt,
                                   FedoraCACInterrupted])
def test_interrupted_exit_code(runner, conf_file, monkeypatch, error):
    def rollback(self, ctx):
        raise error()

    monkeypatch.setattr(Controller, "rollback", rollback)
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf_file), "rollback"])

    assert result.exit_code == ReturnCode.INTERRUPTED.value


def test_rollback_passes_options(runner, conf_file, monkeypatch):
    seen = {}

    def rollback(self, ctx):
        seen["yes"] = ctx.assume_yes
        seen["spinner"] = ctx.spinner
        seen["command"] = ctx.command

    monkeypatch.setattr(Controller, "rollback", rollback)
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf_file), "--yes",
                                         "--no-spinner", "rollback"])

    assert result.exit_code == ReturnCode.SUCCESS.value
    assert "Rollback finished." in result.output
    assert seen == {"yes": True, "spinner": False, "command": "rollback"}


def test_invalid_configuration_exit_code(runner, tmp_path):
    conf = tmp_path.joinpath("conf.json")
    conf.write_text('{"chunk_size": -1}')
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf), "setup"])

    assert result.exit_code == ReturnCode.FAILURE.value


def test_ctrl_c_at_prompt_exit_code(runner, conf_file, monkeypatch):
    questions = []

    def confirm(question, default):
        questions.append(question)
        try:
            raise KeyboardInterrupt()
        except KeyboardInterrupt:
            raise click.Abort() from None

    monkeypatch.setattr(Controller, "preflight", lambda self, ctx, probe: None)
    monkeypatch.setattr(click, "confirm", confirm)
    result = runner.invoke(cli_cmd.cli, ["--conf", str(conf_file),
                                         "--no-spinner", "rollback"])

    assert result.exit_code == ReturnCode.INTERRUPTED.value
    # The run stops at the first prompt
    assert len(questions) == 1
    assert "Rollback finished." not in result.output


def test_sigterm_handler_interrupts():
    with pytest.raises(FedoraCACInterrupted):
        cli_cmd._on_terminate(signal.SIGTERM, None)


def test_help_lists_commands_in_definition_order(runner):
    result = runner.invoke(cli_cmd.cli, ["--help"])

    assert result.exit_code == 0
    commands = result.output.split("Commands:")[1]
    assert commands.index("setup") < commands.index("rollback")
