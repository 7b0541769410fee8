"""
This module provides a collection of utility and helper functions utilized
across the FedoraCAC library. These functions are
specifically designed to support the setup and rollback workflows:
system checks, package management, user prompts and report serialization.
They are not intended as general-purpose utilities but as specialized aids
tailored to FedoraCAC's operations.
"""


import json
import shutil
import click
import distro
from typing import Union

from FedoraCAC import run, logger
from FedoraCAC.exceptions import (FedoraCACPreconditionError,
                                  FedoraCACInterrupted)


def fedora_guard():
    """
    Ensures that the current system is Fedora and that ``dnf`` is available.

    :return: None
    :raises FedoraCACPreconditionError: If the system is not Fedora or ``dnf``
                                        is missing.
    """
    if shutil.which("dnf") is None or not isDistro("fedora"):
        logger.error(f"This tool supports Fedora (dnf) only. Detected: "
                     f"{distro.name(pretty=True) or 'unknown'}, dnf present? "
                     f"{'yes' if shutil.which('dnf') else 'no'}")
        raise FedoraCACPreconditionError(
            "This tool targets Fedora with dnf. See log for details.")


def need_cmds(commands: list[str]):
    """
    Checks that every command in ``commands`` is available on ``PATH``.

    :param commands: Names of the commands to check.
    :type commands: list
    :return: None
    :raises FedoraCACPreconditionError: On the first missing command.
    """
    for cmd in commands:
        if shutil.which(cmd) is None:
            logger.error(f"Missing required command: {cmd}")
            raise FedoraCACPreconditionError(
                f"Missing required command: {cmd}")
    logger.debug(f"Required commands present: {', '.join(commands)}")


def log_dnf_version():
    """Log the first line of ``dnf --version`` for the record."""
    out = run(["dnf", "--version"], check=False, log=False)
    banner = (out.stdout or out.stderr or "").strip().splitlines()
    if banner:
        logger.info(banner[0])


def _check_packages(packages: list[str]) -> list[str]:
    """
    Identifies and returns a list of packages that are not currently
    installed on the system. It uses ``rpm -q`` to query each package's
    installation status.

    :param packages: A list of strings, where each string is the name of a
                     package to check for.
    :type packages: list
    :return: A list of strings, containing the names of packages that were
             found to be missing on the system.
    :rtype: list
    """
    missing = []
    for pkg in packages:
        # Return code 1 means the package is not installed
        out = run(["rpm", "-q", pkg], return_code=[0, 1], log=False)
        if out.returncode == 1:
            logger.debug(f"Package {pkg} is not present in the system")
            missing.append(pkg)
        else:
            logger.debug(f"Package {out.stdout.strip()} is present")
    return missing


def _install_packages(packages: list[str], sudo: list[str] = None):
    """
    Installs a list of specified RPM packages on the system.
    After installation, it logs the installed version of each package for
    verification.

    :param packages: Names of the packages to be installed.
    :type packages: list
    :param sudo: Privilege elevation prefix for the command.
    :type sudo: list
    :return: None
    """
    run([*(sudo or []), "dnf", "-y", "install", *packages])
    for pkg in packages:
        pkg = run(["rpm", "-q", pkg], log=False).stdout.strip()
        logger.debug(f"Package {pkg} is installed")


def _remove_packages(packages: list[str], sudo: list[str] = None) \
        -> list[str]:
    """
    Removes those of ``packages`` that are installed.

    :param packages: Names of the packages to be removed.
    :type packages: list
    :param sudo: Privilege elevation prefix for the command.
    :type sudo: list
    :return: Names of the packages that were removed.
    :rtype: list
    """
    installed = [p for p in packages if p not in _check_packages([p])]
    if not installed:
        logger.info("No matching packages are installed.")
        return []
    run([*(sudo or []), "dnf", "-y", "remove", *installed])
    logger.info(f"Removed: {' '.join(installed)}")
    return installed


def ask_yn(question: str, assume_yes: bool = False) -> bool:
    """
    Asks a yes/no question on the terminal. Anything other than an explicit
    yes (including end of input) counts as no; Ctrl-C interrupts the run.

    :param question: The question to be asked.
    :type question: str
    :param assume_yes: Answer yes without asking.
    :type assume_yes: bool
    :return: ``True`` if the answer was yes.
    :rtype: bool
    :raises FedoraCACInterrupted: If the prompt is interrupted.
    """
    if assume_yes:
        logger.debug(f"{question} -> yes (assumed)")
        return True
    try:
        answer = click.confirm(question, default=False)
    except click.Abort as e:
        # click raises Abort for both Ctrl-C and end of input
        if isinstance(e.__context__, KeyboardInterrupt):
            raise FedoraCACInterrupted(f"Interrupted at: {question}")
        answer = False
    logger.debug(f"{question} -> {'yes' if answer else 'no'}")
    return answer


def dump_to_json(obj: any):
    """
    Serializes a given object into a JSON file, using the object's
    ``to_dict()`` method for serialization and its ``dump_file`` attribute to
    determine the output path.

    :param obj: The object to be serialized. It must have a ``to_dict()``
                method and a ``dump_file`` attribute.
    :type obj: object
    :return: None
    """
    with obj.dump_file.open("w") as f:
        json.dump(obj.to_dict(), f, indent=2)
    logger.debug(f"Object {type(obj).__name__} is stored to the "
                 f"{obj.dump_file} file")


def isDistro(OSes: Union[str, list]) -> bool:
    """
    Identifies if the current operating system matches a specified
    distribution, using the ``distro`` library to determine the system's ID
    and name.

    :param OSes: The ID or name of the operating system(s) to check against.
                 Can be a single string (e.g., "fedora") or a list of
                 strings. Case-insensitive comparison is performed.
    :type OSes: Union[str, list]
    :return: ``True`` if the current operating system matches.
    :rtype: bool
    """
    cur_id = distro.id().lower()
    cur_name = distro.name().lower()

    if isinstance(OSes, str):
        OSes = [OSes]
    return any(item.lower() in cur_id or item.lower() in cur_name
               for item in OSes if isinstance(item, str))
