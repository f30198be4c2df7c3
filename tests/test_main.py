import logging

import httpx
import pytest

from conftest import BYTECODE_SOURCE, document, plain_item, script_item
from rbxlx_decompiler import main as cli
from rbxlx_decompiler.pipeline.transformer import OracleClient
from rbxlx_decompiler.state import Outcome


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("ORACLE_KEY", "ORACLE_BASE_URL", "ORACLE_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def patched_client(monkeypatch, oracle):
    client, o = oracle
    monkeypatch.setattr(cli, "OracleClient", lambda base_url, key, timeout: client)
    return o


def test_run_pipeline_scenario(write_doc, oracle):
    client, o = oracle
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))

    state = cli.run_pipeline(str(path), client)

    assert (state["processed"], state["total"]) == (1, 1)
    assert state["outcomes"] == {Outcome.DECOMPILED: 1}
    (sub,) = state["substitutions"]
    assert sub["text"] == "-- Bytecode (Base64):\n-- QUJD\n\nlocal x = 1\nprint(1)"
    assert len(o.requests) == 1


def test_run_pipeline_no_scripts(write_doc, oracle):
    client, o = oracle
    path = write_doc(document(plain_item("Workspace", "Workspace")))
    state = cli.run_pipeline(str(path), client)
    assert (state["processed"], state["total"]) == (0, 0)
    assert state["substitutions"] == []
    assert o.requests == []


def test_run_pipeline_failures_do_not_stop_pass(write_doc, oracle, caplog):
    client, o = oracle
    o.reply = (429, "Slow down")
    path = write_doc(document(
        script_item("Script", "First", BYTECODE_SOURCE),
        script_item("Script", "Plain", "print('no bytecode')"),
        script_item("LocalScript", "Second", BYTECODE_SOURCE),
    ))
    caplog.set_level(logging.INFO)

    state = cli.run_pipeline(str(path), client)

    assert (state["processed"], state["total"]) == (3, 3)
    assert state["outcomes"] == {Outcome.REJECTED: 2, Outcome.NO_BYTECODE: 1}
    assert state["substitutions"] == []
    assert len(o.requests) == 2
    assert "[1/1] Decompiling First... Slow down" in caplog.text
    assert "[2/2] Decompiling Plain... no bytecode!" in caplog.text


def test_missing_key_is_fatal(write_doc, patched_client, tmp_path):
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))
    out = tmp_path / "out.rbxlx"
    assert cli.main([str(path), "-o", str(out)]) == 1
    assert patched_client.requests == []
    assert not out.exists()


def test_missing_input_is_fatal(tmp_path, patched_client):
    assert cli.main([str(tmp_path / "missing.rbxlx"), "-k", "secret"]) == 1
    assert patched_client.requests == []


def test_main_writes_rewritten_document(write_doc, patched_client, tmp_path, caplog):
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))
    out = tmp_path / "nested" / "out.rbxlx"
    caplog.set_level(logging.INFO)

    assert cli.main([str(path), "-o", str(out), "-k", "secret"]) == 0

    assert b"local x = 1\nprint(1)]]></ProtectedString>" in out.read_bytes()
    assert "[1/1] Decompiling Main... decompiled in" in caplog.text


def test_main_key_from_env(write_doc, patched_client, tmp_path, monkeypatch):
    monkeypatch.setenv("ORACLE_KEY", "from-env")
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))
    assert cli.main([str(path), "-o", str(tmp_path / "out.rbxlx")]) == 0


def test_main_dry_run_writes_nothing(write_doc, patched_client, tmp_path):
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))
    out = tmp_path / "out.rbxlx"
    assert cli.main([str(path), "-o", str(out), "-k", "secret", "--dry-run"]) == 0
    assert not out.exists()
    assert len(patched_client.requests) == 1


def test_key_flag_sent_as_bearer(write_doc, tmp_path, monkeypatch):
    seen = []

    def handler(request):
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, text="print(1)")

    monkeypatch.setenv("ORACLE_KEY", "env-key")
    monkeypatch.setattr(
        cli, "OracleClient",
        lambda base_url, key, timeout: OracleClient(base_url, key, timeout, transport=httpx.MockTransport(handler)),
    )
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))

    assert cli.main([str(path), "-o", str(tmp_path / "o.rbxlx"), "--key", "flag-key"]) == 0
    assert seen == ["Bearer flag-key"]


def test_main_bad_base_url_exits_before_scan(write_doc, tmp_path):
    path = write_doc(document(script_item("Script", "Main", BYTECODE_SOURCE)))
    out = tmp_path / "out.rbxlx"
    assert cli.main([str(path), "-o", str(out), "-k", "x", "--base-url", "http://[::1"]) == 1
    assert not out.exists()


def test_run_pipeline_reports_declared_encoding(tmp_path, oracle):
    client, _ = oracle
    path = tmp_path / "latin.rbxlx"
    text = document(script_item("Script", "Café", BYTECODE_SOURCE))
    path.write_bytes(text.replace("utf-8", "ISO-8859-1").encode("latin-1"))

    state = cli.run_pipeline(str(path), client)
    assert state["encoding"] == "iso-8859-1"
    assert len(state["substitutions"]) == 1
