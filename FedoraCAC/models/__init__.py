"""
This module serves as the package initializer for ``FedoraCAC.models``.
The model classes encapsulate the workspace bookkeeping, the certificate
bundle, the system trust anchor store, the reconciliation between them and
the smart card service used by the setup and rollback workflows.
"""
