"""
This module implements the local workspace (``~/.cac``) and the per-run
context that is threaded through the setup and rollback workflows.

The ``Workspace`` owns the directory tree: timestamped archives and decoded
PEM bundles, numbered split certificate files and per-run log files. The
``RunContext`` bundles everything a single invocation needs (its workspace
paths, its log file handler, privilege elevation and prompt policy) so that
nothing is kept in module-level globals and tests can build independent
contexts.
"""


import logging
import os
from datetime import datetime
from pathlib import Path
from shutil import rmtree

from FedoraCAC import logger, run, fmt, CAC_DIR, CERTS_DIR_NAME, LOGS_DIR_NAME
from FedoraCAC.utils import ask_yn

BEGIN_MARKER = "-----BEGIN CERTIFICATE-----"


class RunPaths:
    """
    Paths of the artifacts that belong to one run.
    """
    def __init__(self, stamp: str, archive: Path, pem: Path, report: Path,
                 log: Path):
        self.stamp = stamp
        self.archive = archive
        self.pem = pem
        self.report = report
        self.log = log


class Workspace:
    """
    The local directory holding downloaded archives, decoded PEM bundles and
    split certificate files across runs.

    Archives, PEM bundles, reports and logs are namespaced by the start
    timestamp of the run. Split certificate files (``cert-NN.pem``) are not:
    they represent the latest decoded bundle and are reused by the rollback,
    which is why they are purged before every decode.
    """
    split_prefix = "cert-"
    bundle_dir_pattern = "Certificates_PKCS7_*"

    def __init__(self, root: Path = None):
        self.root = Path(root) if root else CAC_DIR
        self.certs_dir = self.root.joinpath(CERTS_DIR_NAME)
        self.logs_dir = self.root.joinpath(LOGS_DIR_NAME)

    @staticmethod
    def new_stamp() -> str:
        return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    def ensure_run_namespace(self, stamp: str = None,
                             command: str = "setup") -> RunPaths:
        """
        Creates the workspace directories and returns the artifact paths of
        a run started at ``stamp``. If artifacts of another run with the
        same stamp already exist, a numeric suffix is appended so the two
        runs never share a path.

        :param stamp: Start timestamp of the run. Current time if not set.
        :type stamp: str
        :param command: Name of the command, used in the log file name.
        :type command: str
        :return: Paths of the run's artifacts.
        :rtype: RunPaths
        """
        for d in (self.root, self.certs_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)

        base = stamp or self.new_stamp()
        stamp, n = base, 0
        while True:
            paths = RunPaths(
                stamp=stamp,
                archive=self.certs_dir.joinpath(f"dod_{stamp}.zip"),
                pem=self.certs_dir.joinpath(f"dod_bundle_{stamp}.pem"),
                report=self.certs_dir.joinpath(f"report_{stamp}.json"),
                log=self.logs_dir.joinpath(f"fedora-cac-{command}_{stamp}.log"))
            if not any(p.exists() for p in
                       (paths.archive, paths.pem, paths.report, paths.log)):
                break
            n += 1
            stamp = f"{base}-{n}"
        logger.debug(f"Run namespace {stamp} in {self.root}")
        return paths

    def purge_split_artifacts(self, directory: Path = None) -> int:
        """
        Removes split certificate files left by previous runs.

        :param directory: Directory to purge. Defaults to the certs directory.
        :type directory: pathlib.Path
        :return: Number of removed files.
        :rtype: int
        """
        directory = directory or self.certs_dir
        removed = 0
        for f in directory.glob(f"{self.split_prefix}*"):
            if f.is_file():
                f.unlink()
                removed += 1
        logger.debug(f"Removed {removed} split certificate file(s) from "
                     f"{directory}")
        return removed

    def purge_previous_bundle_directories(self, pattern: str = None) -> int:
        """
        Removes directories extracted from previously downloaded archives.

        :param pattern: Glob pattern of the directories in the certs
                        directory.
        :type pattern: str
        :return: Number of removed directories.
        :rtype: int
        """
        removed = 0
        for d in self.certs_dir.glob(pattern or self.bundle_dir_pattern):
            if d.is_dir():
                rmtree(d)
                removed += 1
        logger.debug(f"Removed {removed} previous bundle directory(ies)")
        return removed

    def split_files(self, directory: Path = None) -> list[Path]:
        """
        Returns the split certificate files in ``directory`` that contain a
        certificate marker, in name order.

        :param directory: Directory to scan. Defaults to the certs directory.
        :type directory: pathlib.Path
        :return: Sorted list of split certificate files.
        :rtype: list
        """
        directory = directory or self.certs_dir
        if not directory.is_dir():
            return []
        files = []
        for f in sorted(directory.glob(f"{self.split_prefix}*.pem")):
            if f.is_file() and BEGIN_MARKER in f.read_text(errors="replace"):
                files.append(f)
            else:
                logger.debug(f"Ignoring {f}: no certificate marker")
        return files

    def clear(self, keep: Path = None):
        """
        Wipes the certs directory and every log except ``keep``.

        :param keep: Path of the file that must survive (the current log).
        :type keep: pathlib.Path
        :return: None
        """
        for d in (self.certs_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)
            for f in d.iterdir():
                if keep is not None and f == keep:
                    continue
                if f.is_dir():
                    rmtree(f)
                else:
                    f.unlink()
        logger.info(f"Cleared certs and old logs. Preserved current log: "
                    f"{keep}")


class Privilege:
    """
    Privilege elevation handle. When not running as root, store and package
    mutations are prefixed with ``sudo`` and ``elevate`` refreshes the sudo
    timestamp once per phase so the password prompt appears on its own.
    """
    def __init__(self, use_sudo: bool = None):
        self.use_sudo = os.geteuid() != 0 if use_sudo is None else use_sudo

    @property
    def prefix(self) -> list[str]:
        return ["sudo"] if self.use_sudo else []

    def elevate(self):
        if self.use_sudo:
            # Prompt goes straight to the terminal
            run(["sudo", "-v"], stdout=None, stderr=None)


class RunContext:
    """
    Everything one invocation needs: the workspace and this run's artifact
    paths, the per-run log file, privilege elevation and prompt policy.

    Use it as a context manager to attach the per-run log file to the
    package logger for the duration of the run.
    """
    def __init__(self, workspace: Workspace, command: str = "setup",
                 stamp: str = None, assume_yes: bool = False,
                 spinner: bool = True, privilege: Privilege = None):
        self.workspace = workspace
        self.command = command
        self.paths = workspace.ensure_run_namespace(stamp, command)
        self.assume_yes = assume_yes
        self.spinner = spinner
        self.privilege = privilege if privilege else Privilege()
        self._handler = None

    @property
    def log_file(self) -> Path:
        return self.paths.log

    def ask(self, question: str) -> bool:
        return ask_yn(question, self.assume_yes)

    def __enter__(self):
        self._handler = logging.FileHandler(self.paths.log, encoding="utf-8")
        self._handler.setLevel(logging.DEBUG)
        self._handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(self._handler)
        logger.debug(f"Run {self.paths.stamp} started, log: {self.paths.log}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Run {self.paths.stamp} aborted: "
                         f"{exc_type.__name__}: {exc_val}")
            logger.error(f"Full log: {self.paths.log}")
        logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None
