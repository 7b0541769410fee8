"""
This module implements ``AnchorStore``, a thin wrapper over the system trust
anchor registry managed by p11-kit (``trust`` CLI) and the derived trust
bundles refreshed by ``update-ca-trust extract``.

Adding an anchor that is already present and removing one that is absent are
both handled by p11-kit itself; this wrapper only reports whether a call
succeeded and never raises on a failing mutation, the caller decides.
"""


import re
from pathlib import Path

from FedoraCAC import logger, run, DOD_MARKERS
from FedoraCAC.models.workspace import Privilege


class AnchorStore:
    """
    The system trust anchor store.
    """
    def __init__(self, privilege: Privilege = None, markers: str = DOD_MARKERS):
        """
        :param privilege: Privilege elevation handle used for mutations.
        :type privilege: FedoraCAC.models.workspace.Privilege
        :param markers: Regular expression matched (case-insensitive) against
                        the lines of ``trust list`` to count the relevant
                        anchors.
        :type markers: str
        """
        self.privilege = privilege if privilege else Privilege()
        self.markers = re.compile(markers, re.IGNORECASE)

    def elevate(self):
        self.privilege.elevate()

    def _anchor(self, files: list[Path], remove: bool = False) -> bool:
        cmd = [*self.privilege.prefix, "trust", "anchor"]
        if remove:
            cmd.append("--remove")
        out = run([*cmd, *files], check=False, log=False)
        if out.returncode != 0:
            # Reported by the caller once the spinner is stopped
            logger.debug(f"trust anchor{' --remove' if remove else ''} "
                         f"failed for {len(files)} file(s) "
                         f"(exit={out.returncode}): {out.stderr}")
        return out.returncode == 0

    def add(self, files: list[Path]) -> bool:
        return self._anchor(files)

    def remove(self, files: list[Path]) -> bool:
        return self._anchor(files, remove=True)

    def list_anchors(self) -> str:
        return run(["trust", "list"], check=False, log=False).stdout or ""

    def matching(self) -> list[str]:
        """Lines of ``trust list`` that match the organization markers."""
        return [line for line in self.list_anchors().splitlines()
                if self.markers.search(line)]

    def count(self) -> int:
        """
        Counts the anchors whose listing matches the organization markers.
        This is a coarse signal of what is installed, not exact membership
        of a certificate set.
        """
        return len(self.matching())

    def extract(self) -> bool:
        """
        Refreshes the derived trust bundles.

        :return: ``True`` on success.
        :rtype: bool
        """
        out = run([*self.privilege.prefix, "update-ca-trust", "extract"],
                  check=False, log=False)
        if out.returncode != 0:
            logger.debug(f"update-ca-trust extract failed "
                         f"(exit={out.returncode}): {out.stderr}")
        return out.returncode == 0
