"""
This module implements the retrieval and decoding of the DoD PKI certificate
bundle.

``BundleFetcher`` checks that the bundle host is reachable and downloads the
ZIP archive with ``requests``. ``BundleDecoder`` extracts the archive, locates
the PKCS#7 object, converts it to PEM certificates with ``openssl pkcs7`` and
splits the result into one file per certificate. The decoded certificates are
returned as a ``CertificateBundle`` whose entries are identified by the
SHA-256 fingerprint of their DER content.
"""


import base64
import binascii
import re
import subprocess
import zipfile
from hashlib import sha256
from pathlib import Path
from typing import Union

import requests
from cryptography import x509

from FedoraCAC import logger, run, CERTS_URL, CONVERSION_TIMEOUT, PROBE_TIMEOUT
from FedoraCAC.exceptions import (FedoraCACUnreachable,
                                  FedoraCACExtractionFailed,
                                  FedoraCACBundleFormatError,
                                  FedoraCACConversionFailed)
from FedoraCAC.models.workspace import Workspace, BEGIN_MARKER

END_MARKER = "-----END CERTIFICATE-----"


class Certificate:
    """
    A single PEM certificate of the bundle.
    """
    def __init__(self, pem: str, path: Path = None):
        """
        :param pem: PEM text of the certificate, from the begin marker to the
                    end marker.
        :type pem: str
        :param path: The split file holding this certificate, if written.
        :type path: pathlib.Path, optional
        :raises ValueError: If ``pem`` is not a single well-formed PEM block.
        """
        lines = [line.strip() for line in pem.strip().splitlines()]
        if not lines or lines[0] != BEGIN_MARKER or lines[-1] != END_MARKER:
            raise ValueError("Not a PEM certificate block")
        body = "".join(lines[1:-1])
        try:
            self.der = base64.b64decode(body, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid PEM body: {e}")
        if not self.der:
            raise ValueError("Empty PEM body")
        self.pem = "\n".join(lines) + "\n"
        self.path = path

    @property
    def fingerprint(self) -> str:
        return sha256(self.der).hexdigest()

    @property
    def subject(self) -> str:
        try:
            return x509.load_der_x509_certificate(self.der).subject \
                .rfc4514_string()
        except ValueError:
            return "<unparsable certificate>"

    def __eq__(self, other):
        return isinstance(other, Certificate) and \
            self.fingerprint == other.fingerprint

    def __hash__(self):
        return hash(self.fingerprint)

    def __repr__(self):
        return f"<Certificate {self.fingerprint[:16]} {self.path}>"


class CertificateBundle:
    """
    Ordered collection of distinct certificates decoded from one PKCS#7
    object. Adding a certificate whose fingerprint is already present is a
    no-op, so fingerprints are unique within a bundle.
    """
    def __init__(self, certificates: list = None):
        self._certs = {}
        for cert in certificates or []:
            self.add(cert)

    def add(self, cert: Certificate) -> bool:
        if cert.fingerprint in self._certs:
            logger.debug(f"Duplicate certificate {cert.fingerprint} ignored")
            return False
        self._certs[cert.fingerprint] = cert
        return True

    @property
    def fingerprints(self) -> set:
        return set(self._certs)

    @property
    def files(self) -> list[Path]:
        return [c.path for c in self._certs.values() if c.path is not None]

    @staticmethod
    def from_files(files: list) -> "CertificateBundle":
        """
        Builds a bundle from split certificate files written by an earlier
        run.

        :param files: Paths of split certificate files.
        :type files: list
        :return: The bundle of certificates read from ``files``.
        :rtype: CertificateBundle
        """
        bundle = CertificateBundle()
        for f in files:
            f = Path(f)
            text = f.read_text(errors="replace")
            for block in _pem_blocks(text):
                try:
                    bundle.add(Certificate(block, f))
                except ValueError as e:
                    logger.warning(f"Skipping {f}: {e}")
        return bundle

    def __len__(self):
        return len(self._certs)

    def __iter__(self):
        return iter(self._certs.values())

    def __contains__(self, cert):
        return cert.fingerprint in self._certs


def _pem_blocks(text: str) -> list[str]:
    """
    Splits concatenated PEM text at the certificate begin marker. Anything
    before the first marker and after each end marker (e.g. ``subject=``
    lines printed by openssl) is dropped; pieces without an end marker are
    dropped too.
    """
    blocks = []
    for piece in text.split(BEGIN_MARKER)[1:]:
        end = piece.find(END_MARKER)
        if end == -1:
            logger.debug("Dropping PEM piece without end marker")
            continue
        blocks.append(BEGIN_MARKER + piece[:end] + END_MARKER)
    return blocks


class BundleFetcher:
    """
    Checks reachability of the certificate bundle host and downloads the
    bundle archive.
    """
    probe_range = "bytes=0-128"

    def __init__(self, url: str = CERTS_URL, timeout: int = PROBE_TIMEOUT,
                 session: requests.Session = None):
        self.url = url
        self.timeout = timeout
        self.session = session if session else requests.Session()
        # Method of the last successful probe
        self.reachable = None

    def probe(self) -> str:
        """
        Checks that the bundle URL is reachable. A HEAD request is tried
        first; the host does not answer it for every client, so a small
        ranged GET is used as a fallback and its success is accepted as
        evidence of reachability.

        :return: The method that succeeded (``HEAD`` or ``GET``).
        :rtype: str
        :raises FedoraCACUnreachable: If both methods fail.
        """
        try:
            resp = self.session.head(self.url, allow_redirects=True,
                                     timeout=self.timeout)
            resp.raise_for_status()
            logger.info("Network OK: HEAD succeeded.")
            self.reachable = "HEAD"
            return self.reachable
        except requests.RequestException as e:
            logger.warning(f"HEAD failed ({e}); trying a small ranged GET.")

        try:
            with self.session.get(self.url, headers={"Range": self.probe_range},
                                  stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
            logger.info("Network OK: ranged GET succeeded.")
            self.reachable = "GET"
            return self.reachable
        except requests.RequestException as e:
            logger.error(f"Cannot reach the certificate bundle URL "
                         f"{self.url}: {e}")
            raise FedoraCACUnreachable(
                f"Cannot reach the certificate bundle URL {self.url}")

    def fetch(self) -> bytes:
        """
        Downloads the bundle archive. Reachability is probed first unless an
        earlier probe succeeded.

        :return: Content of the archive.
        :rtype: bytes
        :raises FedoraCACUnreachable: If the host is unreachable or the
                                      download fails.
        """
        if self.reachable is None:
            self.probe()
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Download of {self.url} failed: {e}")
            raise FedoraCACUnreachable(f"Download of {self.url} failed")
        logger.debug(f"Downloaded {len(resp.content)} bytes from {self.url}")
        return resp.content

    def download(self, target: Path) -> Path:
        """
        Downloads the bundle archive and writes it to ``target``.

        :param target: Path of the archive file to be written.
        :type target: pathlib.Path
        :return: ``target``
        :rtype: pathlib.Path
        """
        content = self.fetch()
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as f:
            f.write(content)
        logger.info(f"DoD PKI bundle saved to {target}")
        return target


class BundleDecoder:
    """
    Turns a downloaded bundle archive into individual certificate files.
    """
    pkcs7_suffixes = (".p7b", ".p7c")
    search_depth = 2
    # Tried in order, the first non-empty output wins
    conversion_attempts = (("DER", ["-inform", "DER"]), ("PEM", []))

    def __init__(self, workspace: Workspace,
                 timeout: int = CONVERSION_TIMEOUT):
        self.workspace = workspace
        self.timeout = timeout

    def decode(self, archive: Union[str, Path], directory: Path = None,
               pem: Path = None) -> CertificateBundle:
        """
        Extracts ``archive`` into ``directory``, converts the PKCS#7 object
        found there to PEM and splits it into ``cert-NN.pem`` files in the
        same directory.

        :param archive: Path of the ZIP archive.
        :type archive: pathlib.Path
        :param directory: Working directory. Defaults to the certs directory
                          of the workspace.
        :type directory: pathlib.Path
        :param pem: Path of the concatenated PEM output. Defaults to
                    ``bundle.pem`` in ``directory``.
        :type pem: pathlib.Path
        :return: The decoded certificates.
        :rtype: CertificateBundle
        """
        directory = Path(directory) if directory else self.workspace.certs_dir
        pem = Path(pem) if pem else directory.joinpath("bundle.pem")
        self.extract(archive, directory)
        p7 = self.locate(directory)
        text = self.convert(p7, pem)
        return self.split(text, directory)

    @staticmethod
    def extract(archive: Union[str, Path], directory: Path):
        """
        :raises FedoraCACExtractionFailed: If the archive is corrupt or
                                           unreadable.
        """
        try:
            with zipfile.ZipFile(archive) as z:
                bad = z.testzip()
                if bad is not None:
                    raise FedoraCACExtractionFailed(
                        f"Corrupt member {bad} in {archive}")
                z.extractall(directory)
        except (zipfile.BadZipFile, OSError) as e:
            logger.error(f"Extraction of {archive} failed: {e}")
            raise FedoraCACExtractionFailed(
                f"Certificate bundle archive {archive} can't be extracted")
        logger.info(f"Extracted {archive} to {directory}")

    def locate(self, directory: Path) -> Path:
        """
        Finds the PKCS#7 object in ``directory`` up to ``search_depth``
        levels deep. Candidates are ordered by depth, then by path; the
        first one is used and a warning is logged if there are more.

        :raises FedoraCACBundleFormatError: If no candidate is found.
        """
        directory = Path(directory)
        candidates = []
        for f in directory.rglob("*"):
            depth = len(f.relative_to(directory).parts)
            if depth <= self.search_depth and f.is_file() \
                    and f.suffix.lower() in self.pkcs7_suffixes:
                candidates.append((depth, str(f), f))
        if not candidates:
            logger.error("PKCS#7 (.p7b/.p7c) not found after extraction.")
            raise FedoraCACBundleFormatError()
        candidates.sort()
        p7 = candidates[0][2]
        if len(candidates) > 1:
            logger.warning(f"{len(candidates)} PKCS#7 candidates found, "
                           f"using the first one: {p7}")
            logger.debug("Candidates: " +
                         ", ".join(c[1] for c in candidates))
        logger.info(f"Found PKCS#7 bundle: {p7}")
        return p7

    def _print_certs(self, p7: Path, inform: list[str]) -> Union[str, None]:
        """
        One conversion attempt. Returns the PEM output, or ``None`` if
        openssl failed or printed no certificate.
        """
        out = run(["openssl", "pkcs7", *inform, "-print_certs", "-in", p7],
                  check=False, log=False, timeout=self.timeout)
        if out.returncode != 0 or BEGIN_MARKER not in (out.stdout or ""):
            logger.debug(f"openssl pkcs7 {' '.join(inform)} failed "
                         f"(exit={out.returncode}): {out.stderr}")
            return None
        return out.stdout

    def convert(self, p7: Path, pem: Path) -> str:
        """
        Converts the PKCS#7 object to concatenated PEM certificates, trying
        binary (DER) input first and text (PEM) input second.

        :param p7: Path of the PKCS#7 object.
        :type p7: pathlib.Path
        :param pem: Path where the PEM output is written.
        :type pem: pathlib.Path
        :return: The PEM output.
        :rtype: str
        :raises FedoraCACConversionFailed: If no attempt produced a
                                           certificate or an attempt timed
                                           out.
        """
        for name, inform in self.conversion_attempts:
            try:
                text = self._print_certs(p7, inform)
            except subprocess.TimeoutExpired:
                logger.error(f"Conversion of {p7} ({name}) timed out after "
                             f"{self.timeout}s")
                raise FedoraCACConversionFailed(
                    f"PEM conversion of {p7} timed out")
            if text:
                logger.info(f"Converted {p7} to PEM ({name} input)")
                pem.write_text(text)
                return text
            logger.warning(f"Conversion of {p7} as {name} produced no "
                           f"certificates")
        logger.error("PEM conversion failed (empty).")
        raise FedoraCACConversionFailed(f"PEM conversion of {p7} failed")

    def split(self, text: str, directory: Path = None) -> CertificateBundle:
        """
        Writes every certificate of ``text`` to its own ``cert-NN.pem`` file
        in ``directory``. Split files of previous runs are purged first, so
        the resulting file set is exactly the current bundle.

        :param text: Concatenated PEM certificates.
        :type text: str
        :param directory: Target directory. Defaults to the certs directory.
        :type directory: pathlib.Path
        :return: The written certificates.
        :rtype: CertificateBundle
        :raises FedoraCACConversionFailed: If ``text`` holds no certificate.
        """
        directory = Path(directory) if directory else self.workspace.certs_dir
        directory.mkdir(parents=True, exist_ok=True)
        self.workspace.purge_split_artifacts(directory)

        certs = []
        for block in _pem_blocks(text):
            try:
                certs.append(Certificate(block))
            except ValueError as e:
                logger.warning(f"Skipping malformed certificate: {e}")

        bundle = CertificateBundle()
        width = max(2, len(str(len(certs))))
        for cert in certs:
            if cert in bundle:
                logger.debug(f"Duplicate certificate {cert.fingerprint} "
                             f"is not written")
                continue
            cert.path = directory.joinpath(
                f"{self.workspace.split_prefix}{len(bundle):0{width}d}.pem")
            cert.path.write_text(cert.pem)
            bundle.add(cert)
            logger.debug(f"{cert.path.name}: {cert.subject}")

        if not len(bundle):
            raise FedoraCACConversionFailed(
                "PEM output contains no certificate")
        logger.info(f"Split {len(bundle)} certificate(s) into {directory}")
        return bundle
