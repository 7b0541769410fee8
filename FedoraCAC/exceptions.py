"""
Exceptions that are used in the FedoraCAC library.
This module defines a hierarchy of custom exception classes that are
raised by FedoraCAC components to signal specific error conditions
during setup and rollback. Every exception defined here is fatal for the
run that raises it; recoverable conditions (a failing chunk of trust anchors,
a failing trust bundle refresh) are recorded on the mutation result instead.
"""


class FedoraCACException(Exception):
    """
    Base exception class for all custom exceptions within FedoraCAC.
    All other FedoraCAC-specific exceptions inherit from this class,
    allowing for a unified way to catch any error originating from the library.
    """
    def __init__(self, *args):
        super().__init__(*args)


class FedoraCACCommandFailed(FedoraCACException):
    """
    Exception raised when a required external command exits with an
    unexpected return code.
    """
    def __init__(self, cmd: str, returncode: int):
        self.cmd = cmd
        self.returncode = returncode
        super().__init__(f"Required step failed (exit={returncode}): {cmd}")


class FedoraCACPreconditionError(FedoraCACException):
    """
    Exception raised when the system is not a supported target (not Fedora
    with dnf) or a required command is missing.
    """
    default = "Required tool or environment is missing"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACWrongConfig(FedoraCACException):
    """
    Exception raised when the configuration file can't be parsed or does not
    match the expected schema.
    """
    default = "Configuration file is not valid"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACUnreachable(FedoraCACException):
    """
    Exception raised when the certificate bundle host can't be reached by
    neither the HEAD probe nor the ranged GET.
    """
    default = "Cannot reach the certificate bundle URL"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACExtractionFailed(FedoraCACException):
    """
    Exception raised when the downloaded archive is corrupt or unreadable.
    """
    default = "Certificate bundle archive can't be extracted"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACBundleFormatError(FedoraCACException):
    """
    Exception raised when no PKCS#7 (.p7b/.p7c) object is found in the
    extracted archive.
    """
    default = "PKCS#7 (.p7b/.p7c) not found after extraction"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACConversionFailed(FedoraCACException):
    """
    Exception raised when the PKCS#7 object can't be converted to PEM
    certificates, either because every decoding attempt failed or produced
    an empty output, or because the conversion timed out.
    """
    default = "PEM conversion failed"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)


class FedoraCACInterrupted(FedoraCACException):
    """
    Exception raised when the run is interrupted by the user or terminated
    by a signal.
    """
    default = "Interrupted by user"

    def __init__(self, msg=None):
        msg = self.default if msg is None else msg
        super().__init__(msg)
