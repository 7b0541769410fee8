import datetime
import io
import json
import zipfile
import pytest
from pathlib import Path
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from FedoraCAC.models.anchor_store import AnchorStore
from FedoraCAC.models.bundle import BundleDecoder, CertificateBundle
from FedoraCAC.models.workspace import Workspace, Privilege

P7B_NAME = "Certificates_PKCS7_v5.6_DoD/Certificates_PKCS7_v5.6_DoD.der.p7b"


def make_cert(cn: str, org: str = "U.S. Government"):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, org),
        x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None),
                           critical=True)
            .sign(key, hashes.SHA256()))


def print_certs(certs) -> str:
    """Concatenated PEM as printed by ``openssl pkcs7 -print_certs``."""
    out = ""
    for c in certs:
        out += f"subject={c.subject.rfc4514_string()}\n"
        out += f"issuer={c.issuer.rfc4514_string()}\n"
        out += c.public_bytes(serialization.Encoding.PEM).decode() + "\n"
    return out


def make_zip(members: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as z:
        for name, data in members.items():
            z.writestr(name, data)
    return buf.getvalue()


def p7b_zip(certs) -> bytes:
    der = pkcs7.serialize_certificates(certs, serialization.Encoding.DER)
    return make_zip({P7B_NAME: der,
                     "Certificates_PKCS7_v5.6_DoD/README.txt": b"DoD PKI"})


@pytest.fixture(scope="session")
def cert_pool():
    """Self-signed DoD-like root certificates shared by the session."""
    return [make_cert(f"DoD Root CA {i}") for i in range(45)]


@pytest.fixture()
def workspace(tmp_path):
    return Workspace(tmp_path.joinpath("cac"))


@pytest.fixture()
def crypto_decoder(monkeypatch):
    """
    Decode PKCS#7 with cryptography instead of the openssl binary. The DER
    attempt only accepts DER and the PEM attempt only PEM, like openssl.
    """
    def _print_certs(self, p7, inform):
        data = Path(p7).read_bytes()
        try:
            if inform:
                certs = pkcs7.load_der_pkcs7_certificates(data)
            else:
                certs = pkcs7.load_pem_pkcs7_certificates(data)
        except ValueError:
            return None
        return print_certs(certs) or None

    monkeypatch.setattr(BundleDecoder, "_print_certs", _print_certs)


class FakeAnchorStore(AnchorStore):
    """
    In-memory trust anchor store keyed by certificate fingerprint.

    :param bulk_limit: calls with more files than this fail, as if the
                       tooling rejected the argument count
    :param rejected: names of files that make any call containing them fail
    """
    def __init__(self, bulk_limit: int = None, rejected=(),
                 extract_ok: bool = True):
        super().__init__(Privilege(use_sudo=False))
        self.anchors = {}
        self.calls = []
        self.extract_calls = 0
        self.bulk_limit = bulk_limit
        self.rejected = set(rejected)
        self.extract_ok = extract_ok

    def elevate(self):
        pass

    def _anchor(self, files, remove=False):
        files = [Path(f) for f in files]
        self.calls.append(("remove" if remove else "add", files))
        if self.bulk_limit is not None and len(files) > self.bulk_limit:
            return False
        if any(f.name in self.rejected for f in files):
            return False
        for cert in CertificateBundle.from_files(files):
            if remove:
                self.anchors.pop(cert.fingerprint, None)
            else:
                crt = x509.load_der_x509_certificate(cert.der)
                cn = crt.subject.get_attributes_for_oid(
                    NameOID.COMMON_NAME)[0].value
                self.anchors[cert.fingerprint] = cn
        return True

    def list_anchors(self):
        out = ""
        for fp, label in self.anchors.items():
            out += f"pkcs11:id={fp[:20]};type=cert\n" \
                   f"    type: certificate\n" \
                   f"    label: {label}\n" \
                   f"    trust: anchor\n" \
                   f"    category: authority\n\n"
        return out

    def extract(self):
        self.extract_calls += 1
        return self.extract_ok

    def calls_of(self, action):
        return [c for c in self.calls if c[0] == action]


class FakeFetcher:
    def __init__(self, content: bytes):
        self.content = content
        self.downloads = []

    def probe(self):
        return "HEAD"

    def download(self, target):
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.content)
        self.downloads.append(target)
        return target


@pytest.fixture()
def store():
    return FakeAnchorStore()


@pytest.fixture()
def conf_file(tmp_path):
    path = tmp_path.joinpath("conf.json")
    with path.open("w") as f:
        json.dump({"cac_dir": str(tmp_path.joinpath("cac")),
                   "chunk_size": 5}, f)
    return path
