"""
Implementation of CLI commands for FedoraCAC.

This module defines the command-line interface (CLI) for the ``fedora-cac``
tool, utilizing the ``click`` library. It provides the ``setup`` command,
which installs and configures the smart card stack and the DoD trust anchors,
and the ``rollback`` command, which reverses it step by step.

Exit codes: 0 on success, 1 when a required step fails, 130 when the run is
interrupted.
"""


import click
import coloredlogs
import signal
from sys import exit, argv

from FedoraCAC import logger
from FedoraCAC.controller import Controller
from FedoraCAC.enums import ReturnCode
from FedoraCAC.exceptions import FedoraCACException, FedoraCACInterrupted


def _on_terminate(signum, frame):
    raise FedoraCACInterrupted(f"Terminated by signal {signum}")


class NaturalOrderGroup(click.Group):
    """Lists subcommands in help in definition order: setup, then rollback."""
    def list_commands(self, ctx: click.Context):
        return list(self.commands)


def _execute(ctx: click.Context, command: str, action):
    """
    Runs ``action`` within a new run context and maps its outcome to the
    process exit code.

    :param ctx: The Click context object.
    :type ctx: click.Context
    :param command: Name of the command, used for the log file name.
    :type command: str
    :param action: Callable taking the run context.
    :type action: callable
    :return: The result of ``action``. Exits the process on failure.
    """
    cnt: Controller = ctx.obj["CONTROLLER"]
    run_ctx = cnt.context(command, assume_yes=ctx.obj["YES"],
                          spinner=ctx.obj["SPINNER"])
    previous = signal.signal(signal.SIGTERM, _on_terminate)
    try:
        with run_ctx:
            result = action(run_ctx)
    except (KeyboardInterrupt, FedoraCACInterrupted):
        logger.error("Interrupted by user.")
        click.echo(f"\nLog: {run_ctx.log_file}", err=True)
        exit(ReturnCode.INTERRUPTED.value)
    except FedoraCACException as e:
        logger.error(str(e))
        click.echo(f"\nLog: {run_ctx.log_file}", err=True)
        exit(ReturnCode.FAILURE.value)
    finally:
        signal.signal(signal.SIGTERM, previous)
    return run_ctx, result


@click.group(cls=NaturalOrderGroup)
@click.option("--conf", "-c",
              default=None,
              type=click.Path(exists=True, dir_okay=False, resolve_path=True),
              help="Path to JSON configuration file.")
@click.option("--verbose", "-v", default="INFO", show_default=True,
              type=click.Choice(
                  ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                  case_sensitive=False),
              help="Set the verbosity level of the terminal output. The log "
                   "file always gets everything.")
@click.option("--yes", "-y", is_flag=True, default=False, show_default=True,
              help="Answer yes to every question.")
@click.option("--no-spinner", is_flag=True, default=False, show_default=True,
              help="Do not show the progress spinner.")
@click.pass_context
def cli(ctx: click.Context, conf: str, verbose: str, yes: bool,
        no_spinner: bool):
    """
    Set up (or roll back) DoD CAC smart card support on Fedora.
    """
    coloredlogs.set_level(verbose.upper())
    logger.debug(f"Invoked CLI command: {' '.join(argv)}")
    ctx.ensure_object(dict)
    ctx.obj["YES"] = yes
    ctx.obj["SPINNER"] = not no_spinner
    try:
        ctx.obj["CONTROLLER"] = Controller(conf)
    except FedoraCACException as e:
        logger.error(str(e))
        exit(ReturnCode.FAILURE.value)


@cli.command()
@click.pass_context
def setup(ctx: click.Context):
    """
    Install the smart card packages, enable pcscd.socket and install the DoD
    certificate bundle as system trust anchors. If DoD anchors are already
    present, asks whether to reinstall them.
    """
    cnt: Controller = ctx.obj["CONTROLLER"]
    run_ctx, report = _execute(ctx, "setup", cnt.setup)
    click.echo("")
    click.echo("Artifacts:")
    click.echo(f"  - Certificates: {cnt.workspace.certs_dir}")
    click.echo(f"  - Report: {run_ctx.paths.report}")
    click.echo(f"  - Log (this run): {run_ctx.log_file}")
    click.echo(f"  - DoD anchors: {report.after} (before: {report.before}, "
               f"{report.decision.value})")
    click.echo("")
    click.echo("Test steps:")
    click.echo("  1) Plug in your CAC reader and card.")
    click.echo("  2) Run:  pcsc_scan    (from pcsc-tools) to confirm the card "
               "is detected.")
    click.echo("  3) Open Firefox or Chromium (RPM builds preferred over "
               "Flatpak) and try a CAC-gated site.")
    click.echo("")
    click.echo("Troubleshooting:")
    click.echo(f"  - If the reader isn't detected, check:  systemctl status "
               f"{cnt.conf['service']}")
    click.echo("  - Flatpak browsers may not see host PKCS#11; prefer RPM "
               "builds.")
    exit(ReturnCode.SUCCESS.value)


@cli.command()
@click.pass_context
def rollback(ctx: click.Context):
    """
    Remove the DoD trust anchors, disable pcscd.socket, remove the smart card
    packages (safe set) and clear the workspace. Every step asks first.
    """
    cnt: Controller = ctx.obj["CONTROLLER"]
    run_ctx, _ = _execute(ctx, "rollback", cnt.rollback)
    click.echo("Rollback finished.")
    click.echo(f"Log: {run_ctx.log_file}")
    exit(ReturnCode.SUCCESS.value)


if __name__ == "__main__":
    cli()
