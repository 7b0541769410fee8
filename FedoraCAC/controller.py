"""
This module defines the ``Controller`` class, which serves as the central
orchestrator of FedoraCAC's operations.

It bridges the gap between the CLI and the underlying model components
(workspace, bundle fetcher and decoder, trust anchor store, reconciler and
smart card service). The ``Controller`` runs the setup phases (preflight,
packages, smart card service, certificates) and the rollback phases (trust
anchors, service, packages, workspace cleanup) in order. Every fatal
condition aborts the whole run by raising a ``FedoraCACException``.
"""


import json
import tempfile
from pathlib import Path
from schema import SchemaError
from typing import Union

from FedoraCAC import logger, schema_conf, VERSION, REQ_CMDS
from FedoraCAC.enums import Mode
from FedoraCAC.exceptions import FedoraCACWrongConfig
from FedoraCAC.models.anchor_store import AnchorStore
from FedoraCAC.models.bundle import (BundleFetcher, BundleDecoder,
                                     CertificateBundle)
from FedoraCAC.models.reconciler import AnchorReconciler, ReconciliationReport
from FedoraCAC.models.service import SmartCardService
from FedoraCAC.models.spinner import Spinner
from FedoraCAC.models.workspace import Workspace, RunContext
from FedoraCAC.utils import (fedora_guard, need_cmds, log_dnf_version,
                             _check_packages, _install_packages,
                             _remove_packages, dump_to_json)


class Controller:
    """
    The ``Controller`` owns the validated configuration and the model
    objects. The store, fetcher and service are created for each run from
    its ``RunContext`` unless they were set explicitly.
    """
    conf: dict = None
    _conf_path: Path = None
    store: AnchorStore = None
    fetcher: BundleFetcher = None
    service: SmartCardService = None

    @property
    def conf_path(self):
        return self._conf_path

    def __init__(self, config: Union[Path, str] = None):
        """
        Loads and validates the optional JSON configuration file. Values not
        present in the file get their defaults.

        :param config: Path to the JSON configuration file.
        :type config: pathlib.Path or str, optional
        :raises FedoraCACWrongConfig: If the file can't be parsed or does not
                                      match the schema.
        """
        tmp_conf = {}
        if config:
            self._conf_path = Path(config).absolute()
            try:
                with self._conf_path.open("r") as f:
                    tmp_conf = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise FedoraCACWrongConfig(
                    f"Can't load configuration {self._conf_path}: {e}")
            if tmp_conf is None:
                raise FedoraCACWrongConfig("Data are not loaded correctly.")
        self.conf = self._validate_configuration(tmp_conf)
        self.workspace = Workspace(self.conf["cac_dir"])

    @staticmethod
    def _validate_configuration(conf: dict) -> dict:
        try:
            return schema_conf.validate(conf)
        except SchemaError as e:
            raise FedoraCACWrongConfig(f"Invalid configuration: {e}")

    def context(self, command: str, assume_yes: bool = False,
                spinner: bool = True) -> RunContext:
        return RunContext(self.workspace, command=command,
                          assume_yes=assume_yes, spinner=spinner)

    def _bind(self, ctx: RunContext):
        if self.store is None:
            self.store = AnchorStore(ctx.privilege, self.conf["markers"])
        if self.fetcher is None:
            self.fetcher = BundleFetcher(self.conf["certs_url"])
        if self.service is None:
            self.service = SmartCardService(self.conf["service"],
                                            ctx.privilege)

    def _reconciler(self, ctx: RunContext) -> AnchorReconciler:
        return AnchorReconciler(self.store,
                                chunk_size=self.conf["chunk_size"],
                                confirm=ctx.ask,
                                spinner=lambda: Spinner(enabled=ctx.spinner))

    def _decoder(self) -> BundleDecoder:
        return BundleDecoder(self.workspace,
                             timeout=self.conf["conversion_timeout"])

    def setup(self, ctx: RunContext) -> ReconciliationReport:
        """
        Runs every setup phase in order.

        :param ctx: Context of this run.
        :type ctx: FedoraCAC.models.workspace.RunContext
        :return: The report of the certificates phase.
        :rtype: FedoraCAC.models.reconciler.ReconciliationReport
        """
        self._bind(ctx)
        logger.info(f"DoD CAC setup starting (v{VERSION})  LOG={ctx.log_file}")
        self.preflight(ctx)
        self.install_packages(ctx)
        self.enable_service(ctx)
        return self.install_certificates(ctx)

    def preflight(self, ctx: RunContext, probe: bool = True):
        """
        Checks the target system, the required commands (``sudo`` included
        when mutations are elevated) and, if ``probe`` is set, the
        reachability of the bundle host.

        :raises FedoraCACPreconditionError: On unsupported system or missing
                                            command.
        :raises FedoraCACUnreachable: If the bundle host is unreachable.
        """
        self._bind(ctx)
        fedora_guard()
        need_cmds(REQ_CMDS + ctx.privilege.prefix)
        log_dnf_version()
        if probe:
            self.fetcher.probe()

    def install_packages(self, ctx: RunContext) -> list[str]:
        """
        Installs the required packages that are missing.

        :return: Names of the installed packages.
        :rtype: list
        """
        missing = _check_packages(self.conf["packages"])
        if not missing:
            logger.info("All required packages already installed.")
            return []
        logger.info(f"Installing missing packages: {', '.join(missing)}")
        ctx.privilege.elevate()
        _install_packages(missing, ctx.privilege.prefix)
        return missing

    def enable_service(self, ctx: RunContext):
        self._bind(ctx)
        self.service.enable()

    def install_certificates(self, ctx: RunContext) -> ReconciliationReport:
        """
        Downloads and decodes the DoD PKI bundle into this run's namespace
        and installs it as trust anchors.

        :param ctx: Context of this run.
        :type ctx: FedoraCAC.models.workspace.RunContext
        :return: The report of the reconciliation.
        :rtype: FedoraCAC.models.reconciler.ReconciliationReport
        """
        self._bind(ctx)
        self.workspace.purge_split_artifacts()
        self.workspace.purge_previous_bundle_directories()

        self.fetcher.download(ctx.paths.archive)
        bundle = self._decoder().decode(ctx.paths.archive,
                                        pem=ctx.paths.pem)

        report = self._reconciler(ctx).reconcile(bundle, Mode.install)
        self._dump_report(ctx, report)
        for line in self.store.matching()[:20]:
            logger.info(f"  {line.strip()}")
        return report

    def rollback(self, ctx: RunContext):
        """
        Runs every rollback phase in order. Each phase asks for confirmation
        first.

        :param ctx: Context of this run.
        :type ctx: FedoraCAC.models.workspace.RunContext
        :return: The report of the trust anchors phase, ``None`` if skipped.
        :rtype: FedoraCAC.models.reconciler.ReconciliationReport
        """
        self._bind(ctx)
        logger.info(f"Starting rollback (v{VERSION}). Log: {ctx.log_file}")
        self.preflight(ctx, probe=False)
        report = self.remove_anchors(ctx)
        self.disable_service(ctx)
        self.remove_packages(ctx)
        self.clear_workspace(ctx)
        return report

    def build_cert_set(self, tmp_dir: Path) -> CertificateBundle:
        """
        Returns the certificates to be removed: the split files left by the
        last install if there are any, otherwise the bundle downloaded again
        and decoded in ``tmp_dir``.

        :param tmp_dir: Scratch directory for the downloaded bundle.
        :type tmp_dir: pathlib.Path
        :return: The certificates to be removed.
        :rtype: FedoraCAC.models.bundle.CertificateBundle
        """
        files = self.workspace.split_files()
        if files:
            logger.info(f"Using local certs ({len(files)} file(s)).")
            return CertificateBundle.from_files(files)

        logger.info("Local certs not found; downloading bundle...")
        tmp_dir = Path(tmp_dir)
        archive = self.fetcher.download(tmp_dir.joinpath("dod.zip"))
        bundle = self._decoder().decode(archive, directory=tmp_dir,
                                        pem=tmp_dir.joinpath("dod_bundle.pem"))
        logger.info(f"Prepared {len(bundle)} cert file(s) for removal.")
        return bundle

    def remove_anchors(self, ctx: RunContext) -> ReconciliationReport:
        self._bind(ctx)
        if not ctx.ask("Remove DoD trust anchors from system trust?"):
            logger.info("Skipping trust anchor removal.")
            return None
        with tempfile.TemporaryDirectory(prefix="fedora-cac-") as tmp_dir:
            bundle = self.build_cert_set(Path(tmp_dir))
            report = self._reconciler(ctx).reconcile(bundle, Mode.rollback)
        self._dump_report(ctx, report)
        return report

    def disable_service(self, ctx: RunContext):
        self._bind(ctx)
        if not ctx.ask(f"Disable and stop {self.service.unit}?"):
            logger.info(f"Leaving {self.service.unit} enabled.")
            return
        self.service.disable()

    def remove_packages(self, ctx: RunContext) -> list[str]:
        if not ctx.ask("Remove CAC-related packages (safe set)?"):
            logger.info("Package removal skipped.")
            return []
        ctx.privilege.elevate()
        return _remove_packages(self.conf["remove_packages"],
                                ctx.privilege.prefix)

    def clear_workspace(self, ctx: RunContext):
        if not ctx.ask(f"Clear {self.workspace.root} contents (wipe certs; "
                       f"wipe old logs; keep this log)?"):
            logger.info(f"Leaving {self.workspace.root} as-is.")
            return
        self.workspace.clear(keep=ctx.log_file)

    @staticmethod
    def _dump_report(ctx: RunContext, report: ReconciliationReport):
        report.dump_file = ctx.paths.report
        dump_to_json(report)
