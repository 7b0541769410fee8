"""
This module serves as the initialization point for the FedoraCAC package.

It sets up the package-wide logging configuration using ``coloredlogs``.
It defines global constants for the workspace directories, the location of
the public DoD PKI certificate bundle and the packages and services that make
up the smart card stack on Fedora.

Additionally, it establishes the validation schema (``schema`` library) for
the optional JSON configuration file, so every value that can be overridden
by the user is checked and completed with its default before use.

Every external command goes through ``run``, a wrapper for
``subprocess.run`` that logs the command and its output and raises
``FedoraCACCommandFailed`` on an unexpected return code.
"""


import coloredlogs
import logging
import subprocess
from pathlib import Path
from schema import Schema, Use, And, Optional

from FedoraCAC.exceptions import FedoraCACCommandFailed

fmt = ("%(asctime)s %(name)s:%(module)s.%(funcName)s.%(lineno)d "
       "[%(levelname)s] %(message)s")
date_fmt = "%H:%M:%S"
coloredlogs.install(level="INFO", fmt=fmt, datefmt=date_fmt,
                    field_styles={'levelname': {'bold': True, 'color': 'blue'},
                                  'asctime': {'color': 'green'}})
logger = logging.getLogger(__name__)
# Console verbosity is set on the coloredlogs handler, the per-run log file
# always receives everything
logger.setLevel(logging.DEBUG)
# Disable logs from imported packages
logging.getLogger("urllib3").setLevel(logging.WARNING)

VERSION = "1.4.4"

CERTS_URL = "https://dl.dod.cyber.mil/wp-content/uploads/pki-pke/zip/" \
            "unclass-certificates_pkcs7_v5-6_dod.zip"

CAC_DIR = Path.home().joinpath(".cac")
CERTS_DIR_NAME = "certs"
LOGS_DIR_NAME = "logs"

# Packages required by the smart card stack
REQ_PKGS = [
    "pcsc-lite",
    "pcsc-lite-ccid",
    "opensc",
    "p11-kit",
    "p11-kit-trust",
    "nss-tools",
    "ca-certificates",
    "openssl",
    "pcsc-tools",
]
# Subset of REQ_PKGS that can be removed without breaking the base system
SAFE_REMOVE_PKGS = ["pcsc-lite", "pcsc-lite-ccid", "opensc", "nss-tools",
                    "pcsc-tools"]
REQ_CMDS = ["openssl", "rpm", "systemctl", "trust", "update-ca-trust"]

PCSCD_UNIT = "pcscd.socket"
DOD_MARKERS = r"DoD|Department of Defense"
CHUNK_SIZE = 20
CONVERSION_TIMEOUT = 30
PROBE_TIMEOUT = 15


schema_conf = Schema(And(
    Use(dict),
    {
        Optional("certs_url", default=CERTS_URL): And(
            str, lambda u: u.startswith("https://")),
        Optional("cac_dir", default=CAC_DIR): Use(
            lambda p: Path(p).expanduser()),
        Optional("packages", default=REQ_PKGS): [Use(str)],
        Optional("remove_packages", default=SAFE_REMOVE_PKGS): [Use(str)],
        Optional("service", default=PCSCD_UNIT): Use(str),
        Optional("markers", default=DOD_MARKERS): Use(str),
        Optional("chunk_size", default=CHUNK_SIZE): And(
            Use(int), lambda n: n > 0),
        Optional("conversion_timeout", default=CONVERSION_TIMEOUT): And(
            Use(int), lambda n: n > 0),
    }),
    ignore_extra_keys=True)


def run(cmd: list[str], stdout: int = subprocess.PIPE,
        stderr: int = subprocess.PIPE, check: bool = True, log: bool = True,
        return_code: list = None, **kwargs) \
        -> subprocess.CompletedProcess:
    """
    Runs ``cmd`` and logs it. Captured stdout is logged at DEBUG and stderr
    at WARNING unless ``log`` is unset.

    :param cmd: The command. Items are converted to ``str``.
    :type cmd: list
    :param stdout: Where the standard output goes. Captured by default;
                   ``None`` leaves it on the terminal.
    :param stderr: Where the standard error goes, as ``stdout``.
    :param check: Raise if the return code is not in ``return_code``.
    :type check: bool
    :param log: Log the captured output.
    :type log: bool
    :param return_code: Accepted return codes. Defaults to ``[0]``.
    :type return_code: list
    :param kwargs: Passed to ``subprocess.run`` (e.g. ``timeout``).
    :raises FedoraCACCommandFailed: If ``check`` is set and the return code
                                    is not accepted.
    :raises subprocess.TimeoutExpired: If ``timeout`` elapses.
    :return: The completed process.
    :rtype: subprocess.CompletedProcess
    """
    if return_code is None:
        return_code = [0]
    cmd = [str(i) for i in cmd]
    logger.debug(f"run: {' '.join(cmd)}")
    out = subprocess.run(cmd, stdout=stdout, stderr=stderr, encoding="utf-8",
                         **kwargs)
    if log:
        if out.stdout:
            logger.debug(out.stdout)
        if out.stderr:
            logger.warning(out.stderr)

    if check:
        if out.returncode not in return_code:
            logger.error(f"Unexpected return code {out.returncode}. "
                         f"Expected: {return_code}")
            raise FedoraCACCommandFailed(" ".join(cmd), out.returncode)
    return out
