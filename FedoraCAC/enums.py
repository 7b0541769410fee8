"""
This module defines various enumeration classes used throughout the FedoraCAC
library. These enumerations provide a set of
named constants, enhancing code readability, maintainability, and reducing
the likelihood of errors by restricting values to a predefined set.
"""


from enum import Enum


class ReturnCode(Enum):
    """
    Process exit codes of the ``fedora-cac`` command.
    """

    SUCCESS = 0  # operation completed successfully
    FAILURE = 1  # a required step failed
    INTERRUPTED = 130  # interrupted by the user or terminated by a signal


class Mode(str, Enum):
    """
    Direction of a reconciliation of the trust anchors.
    """

    install = "install"
    rollback = "rollback"


class Decision(str, Enum):
    """
    Outcome of comparing the anchors already present in the trust store with
    the decoded certificate bundle.
    """

    install = "install"  # no anchors present, install everything
    skip = "skip"  # anchors present, user chose to leave them
    reinstall = "reinstall"  # anchors present, remove then install
    remove = "remove"  # rollback
