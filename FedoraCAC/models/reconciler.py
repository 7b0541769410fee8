"""
This module implements ``AnchorReconciler``, which brings the system trust
anchor store in line with a decoded certificate bundle.

On install, the reconciler probes how many organization anchors are already
present. With none it installs the whole bundle; otherwise it asks whether to
skip or to reinstall (remove the bundle, then add it again). On rollback it
removes the bundle. After any mutation it probes again and reports the
before/after counts and the elapsed time.

Mutations are batched: one bulk call over all certificate files is tried
first, and if the store rejects it the files are applied in fixed-size chunks
where a failing chunk does not stop the following ones. The store's trust
bundle refresh runs afterwards on a best-effort basis.
"""


import time
from pathlib import Path
from typing import Callable

from FedoraCAC import logger, CHUNK_SIZE
from FedoraCAC.enums import Mode, Decision
from FedoraCAC.models.anchor_store import AnchorStore
from FedoraCAC.models.bundle import CertificateBundle
from FedoraCAC.models.spinner import Spinner


class MutationResult:
    """
    Outcome of one batched add or remove over a set of certificate files.
    """
    def __init__(self, action: str, files: int):
        self.action = action
        self.files = files
        self.bulk_ok = None
        # (first file index, number of files, succeeded)
        self.chunks = []
        self.consolidated = None

    @property
    def failed_chunks(self) -> list:
        return [c for c in self.chunks if not c[2]]

    @property
    def ok(self) -> bool:
        return bool(self.bulk_ok) or (bool(self.chunks)
                                      and not self.failed_chunks)

    def to_dict(self):
        return {"action": self.action,
                "files": self.files,
                "bulk_ok": self.bulk_ok,
                "chunks": [list(c) for c in self.chunks],
                "failed_chunks": len(self.failed_chunks),
                "consolidated": self.consolidated}


class ReconciliationReport:
    """
    What a reconciliation decided and did.
    """
    dump_file: Path = None

    def __init__(self, mode: Mode, certificates: int):
        self.mode = mode
        self.certificates = certificates
        self.subjects = []
        self.decision = None
        self.before = None
        self.after = None
        self.elapsed = 0.0
        self.mutations = []

    def to_dict(self):
        return {"mode": self.mode.value,
                "decision": self.decision.value if self.decision else None,
                "certificates": self.certificates,
                "subjects": self.subjects,
                "before": self.before,
                "after": self.after,
                "elapsed": round(self.elapsed, 3),
                "mutations": [m.to_dict() for m in self.mutations]}


class AnchorReconciler:
    reinstall_question = "Reinstall DoD anchors from the current bundle?"

    def __init__(self, store: AnchorStore, chunk_size: int = CHUNK_SIZE,
                 confirm: Callable[[str], bool] = None,
                 spinner: Callable[[], Spinner] = None):
        """
        :param store: The trust anchor store to be mutated.
        :type store: FedoraCAC.models.anchor_store.AnchorStore
        :param chunk_size: Number of files per call when the bulk call fails.
        :type chunk_size: int
        :param confirm: Asks the skip/reinstall question, returns ``True``
                        to reinstall. Without it existing anchors are kept.
        :type confirm: callable
        :param spinner: Factory of the progress indicator shown during
                        mutations.
        :type spinner: callable
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.store = store
        self.chunk_size = chunk_size
        self.confirm = confirm if confirm else (lambda question: False)
        self.spinner = spinner if spinner else Spinner

    def reconcile(self, bundle: CertificateBundle,
                  mode: Mode = Mode.install) -> ReconciliationReport:
        """
        Reconciles the trust store with ``bundle``.

        :param bundle: The decoded certificates, with their split files.
        :type bundle: FedoraCAC.models.bundle.CertificateBundle
        :param mode: Install or roll back the bundle.
        :type mode: FedoraCAC.enums.Mode
        :return: The report of the reconciliation.
        :rtype: ReconciliationReport
        """
        files = bundle.files
        report = ReconciliationReport(mode, len(files))
        report.subjects = [cert.subject for cert in bundle]
        report.before = self.store.count()
        logger.info(f"DoD-related trust entries before: {report.before}")

        if mode == Mode.rollback:
            report.decision = Decision.remove
        elif report.before == 0:
            report.decision = Decision.install
        else:
            logger.info(f"Existing DoD anchors detected: {report.before}")
            if self.confirm(self.reinstall_question):
                report.decision = Decision.reinstall
            else:
                report.decision = Decision.skip
                report.after = report.before
                logger.info(f"User chose to skip reinstall. Existing DoD "
                            f"entries remain: {report.before}")
                return report

        self.store.elevate()
        t0 = time.monotonic()
        if report.decision in (Decision.remove, Decision.reinstall):
            report.mutations.append(self.remove(files))
        if report.decision in (Decision.install, Decision.reinstall):
            report.mutations.append(self.add(files))
        report.elapsed = time.monotonic() - t0

        report.after = self.store.count()
        logger.info(f"DoD-related trust entries now: {report.after} "
                    f"(before: {report.before}); took {report.elapsed:.1f}s.")
        return report

    def add(self, files: list[Path]) -> MutationResult:
        return self._mutate("add", files)

    def remove(self, files: list[Path]) -> MutationResult:
        return self._mutate("remove", files)

    def _mutate(self, action: str, files: list[Path]) -> MutationResult:
        result = MutationResult(action, len(files))
        if not files:
            logger.warning(f"No certificate files to {action}")
            return result
        call = self.store.add if action == "add" else self.store.remove

        # Nothing is logged while the spinner draws on the terminal
        with self.spinner():
            result.bulk_ok = call(files)
            if not result.bulk_ok:
                for i in range(0, len(files), self.chunk_size):
                    chunk = files[i:i + self.chunk_size]
                    result.chunks.append((i, len(chunk), call(chunk)))
            result.consolidated = self.store.extract()

        if not result.bulk_ok:
            logger.warning(f"Batch {action} failed; applied in "
                           f"{len(result.chunks)} chunk(s) of up to "
                           f"{self.chunk_size} file(s).")
        for i, size, _ in result.failed_chunks:
            logger.warning(
                f"Chunked {action} failed for files {i + 1}-{i + size} of "
                f"{len(files)}: "
                f"{', '.join(Path(f).name for f in files[i:i + size])}")
        if result.failed_chunks:
            logger.warning(f"{len(result.failed_chunks)} of "
                           f"{len(result.chunks)} chunk(s) failed to {action}")
        if not result.consolidated:
            logger.warning("update-ca-trust extract failed; the anchors "
                           "are changed but derived bundles may be stale")
        logger.debug(f"Mutation result: {result.to_dict()}")
        return result
