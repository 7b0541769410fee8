import logging

from FedoraCAC import logger
from FedoraCAC.models.workspace import Workspace, RunContext, Privilege


def test_run_namespace_layout(workspace):
    paths = workspace.ensure_run_namespace("2024-01-02_03-04-05", "setup")

    assert workspace.certs_dir.is_dir()
    assert workspace.logs_dir.is_dir()
    assert paths.archive == workspace.certs_dir.joinpath(
        "dod_2024-01-02_03-04-05.zip")
    assert paths.pem == workspace.certs_dir.joinpath(
        "dod_bundle_2024-01-02_03-04-05.pem")
    assert paths.log == workspace.logs_dir.joinpath(
        "fedora-cac-setup_2024-01-02_03-04-05.log")


def test_run_namespace_is_distinct_for_same_stamp(workspace):
    """Two runs started in the same second must not share artifacts."""
    first = workspace.ensure_run_namespace("2024-01-02_03-04-05")
    first.archive.write_bytes(b"zip")
    second = workspace.ensure_run_namespace("2024-01-02_03-04-05")

    assert second.stamp != first.stamp
    assert second.archive != first.archive
    assert second.pem != first.pem


def test_purge_split_artifacts(workspace):
    workspace.ensure_run_namespace()
    for i in range(3):
        workspace.certs_dir.joinpath(f"cert-{i:02d}.pem").write_text("x")
    keep = workspace.certs_dir.joinpath("dod_bundle_x.pem")
    keep.write_text("x")

    assert workspace.purge_split_artifacts() == 3
    assert list(workspace.certs_dir.glob("cert-*")) == []
    assert keep.exists()


def test_purge_previous_bundle_directories(workspace):
    workspace.ensure_run_namespace()
    old = workspace.certs_dir.joinpath("Certificates_PKCS7_v5.5_DoD")
    old.mkdir()
    old.joinpath("old.p7b").write_bytes(b"old")
    other = workspace.certs_dir.joinpath("other")
    other.mkdir()

    assert workspace.purge_previous_bundle_directories() == 1
    assert not old.exists()
    assert other.exists()


def test_split_files_filters_entries_without_marker(workspace):
    workspace.ensure_run_namespace()
    good = workspace.certs_dir.joinpath("cert-01.pem")
    good.write_text("-----BEGIN CERTIFICATE-----\nAAAA\n"
                    "-----END CERTIFICATE-----\n")
    workspace.certs_dir.joinpath("cert-00.pem").write_text("subject=CN=x\n")
    workspace.certs_dir.joinpath("cert-02.pem").write_text("")

    assert workspace.split_files() == [good]


def test_split_files_missing_directory(tmp_path):
    assert Workspace(tmp_path.joinpath("missing")).split_files() == []


def test_clear_keeps_current_log(workspace):
    paths = workspace.ensure_run_namespace("now", "rollback")
    paths.log.write_text("current")
    old_log = workspace.logs_dir.joinpath("fedora-cac-setup_old.log")
    old_log.write_text("old")
    workspace.certs_dir.joinpath("cert-00.pem").write_text("x")
    workspace.certs_dir.joinpath("Certificates_PKCS7_v5.6_DoD").mkdir()

    workspace.clear(keep=paths.log)

    assert paths.log.exists()
    assert not old_log.exists()
    assert list(workspace.certs_dir.iterdir()) == []


def test_run_context_writes_log_file(workspace):
    ctx = RunContext(workspace, command="setup", stamp="stamp",
                     privilege=Privilege(use_sudo=False))
    with ctx:
        logger.debug("debug line for the file")
    handlers = [h for h in logger.handlers
                if isinstance(h, logging.FileHandler)]

    assert handlers == []
    assert "debug line for the file" in ctx.log_file.read_text()


def test_run_context_logs_abort(workspace):
    ctx = RunContext(workspace, stamp="stamp",
                     privilege=Privilege(use_sudo=False))
    try:
        with ctx:
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert "aborted: RuntimeError: boom" in ctx.log_file.read_text()


def test_run_context_assume_yes(workspace):
    ctx = RunContext(workspace, assume_yes=True,
                     privilege=Privilege(use_sudo=False))
    assert ctx.ask("Proceed?")


def test_privilege_prefix():
    assert Privilege(use_sudo=True).prefix == ["sudo"]
    assert Privilege(use_sudo=False).prefix == []
