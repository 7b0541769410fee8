"""
This module implements ``SmartCardService``, the boundary to systemd for the
PC/SC smart card daemon socket (``pcscd.socket``).
"""


from FedoraCAC import logger, run, PCSCD_UNIT
from FedoraCAC.models.workspace import Privilege


class SmartCardService:
    def __init__(self, unit: str = PCSCD_UNIT, privilege: Privilege = None):
        self.unit = unit
        self.privilege = privilege if privilege else Privilege()

    def enable(self):
        """
        Enables and starts the unit, then verifies it is active and enabled.

        :raises FedoraCACCommandFailed: If any of the steps fails.
        """
        self.privilege.elevate()
        run([*self.privilege.prefix, "systemctl", "enable", "--now",
             self.unit])
        run(["systemctl", "is-active", self.unit])
        run(["systemctl", "is-enabled", self.unit])
        logger.info(f"{self.unit} is enabled and active")

    def disable(self) -> bool:
        """
        Disables and stops the unit. Failure is logged, not raised.

        :return: ``True`` if systemctl succeeded.
        :rtype: bool
        """
        self.privilege.elevate()
        out = run([*self.privilege.prefix, "systemctl", "disable", "--now",
                   self.unit], check=False)
        if out.returncode == 0:
            logger.info(f"{self.unit} disabled/stopped")
        else:
            logger.warning(f"Disabling {self.unit} failed "
                           f"(exit={out.returncode})")
        return out.returncode == 0
