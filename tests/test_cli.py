import json

from typer.testing import CliRunner

from inputforge.cli import app
from inputforge.core.errors import gateway_error

runner = CliRunner()


def _init(tmp_path, *extra):
    path = tmp_path / "Demo.inputforge"
    r = runner.invoke(app, ["init", str(path), "--name", "Demo", *extra])
    assert r.exit_code == 0, r.output
    return str(path)


def _add_text(path, text="Launch a newsletter by spring"):
    r = runner.invoke(app, ["add-input", path, "--text", text])
    assert r.exit_code == 0, r.output
    return r.stdout.strip().splitlines()[-1]


def _analyze(path):
    r = runner.invoke(app, ["analyze", path, "--backend", "mock"])
    assert r.exit_code == 0, r.output
    return r


def test_full_flow_with_mock_backend(tmp_path):
    path = _init(tmp_path, "--persona", "cpo")
    input_id = _add_text(path)

    r = runner.invoke(app, ["annotate", path, input_id, "audience is internal"])
    assert r.exit_code == 0

    r = _analyze(path)
    assert "v1: clarity 70%" in r.stdout

    r = runner.invoke(app, ["persona", path, "Engineer"])
    assert r.exit_code == 0
    _analyze(path)

    r = runner.invoke(app, ["versions", path, "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert [v["version"] for v in payload["versions"]] == [1, 2]
    assert [v["persona"] for v in payload["versions"]] == ["CPO", "Engineer"]

    r = runner.invoke(app, ["diff", path, "1", "2", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["summary"]["added"] == 0
    assert payload["summary"]["removed"] == 0
    assert payload["uncertainty_flags"]["added"] == []

    r = runner.invoke(app, ["restore", path, "1"])
    assert r.exit_code == 0
    assert "Restored v1 as v3" in r.stdout

    r = runner.invoke(app, ["export", path])
    assert r.exit_code == 0
    assert r.stdout.startswith("Demo:\n")
    assert "@persona(Engineer)" in r.stdout


def test_text_outputs(tmp_path):
    path = _init(tmp_path)
    _add_text(path)
    _analyze(path)
    _analyze(path)

    r = runner.invoke(app, ["versions", path])
    assert r.exit_code == 0
    assert "v2" in r.stdout

    r = runner.invoke(app, ["diff", path, "1", "2"])
    assert r.exit_code == 0
    assert "Execution" in r.stdout

    r = runner.invoke(app, ["personas"])
    assert r.exit_code == 0
    assert "Homeowner" in r.stdout


def test_export_to_file(tmp_path):
    path = _init(tmp_path)
    _add_text(path)
    _analyze(path)
    out = tmp_path / "plan.taskpaper"

    r = runner.invoke(app, ["export", path, "--version", "1", "--out", str(out)])
    assert r.exit_code == 0
    assert out.read_text(encoding="utf-8").startswith("Demo:\n")


def test_add_file_input_copies_asset(tmp_path):
    path = _init(tmp_path)
    src = tmp_path / "notes.md"
    src.write_text("# ideas", encoding="utf-8")

    r = runner.invoke(app, ["add-input", path, "--file", str(src), "--note", "first draft"])
    assert r.exit_code == 0
    input_id = r.stdout.strip().splitlines()[-1]
    assets = list((tmp_path / "Demo.inputforge" / "assets").iterdir())
    assert [a.name for a in assets] == [f"{input_id}-notes.md"]

    r = runner.invoke(app, ["remove-input", path, input_id])
    assert r.exit_code == 0
    assert (tmp_path / "Demo.inputforge" / "assets" / f"{input_id}-notes.md").exists()


def test_analyze_without_inputs_fails(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["analyze", path, "--backend", "mock"])
    assert r.exit_code == 2
    assert "E_NO_INPUTS" in r.output


def test_unknown_backend_fails(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["analyze", path, "--backend", "fax"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_BACKEND" in r.output


def test_missing_bundle_fails(tmp_path):
    r = runner.invoke(app, ["versions", str(tmp_path / "missing.inputforge")])
    assert r.exit_code == 1
    assert "E_BUNDLE_NOT_FOUND" in r.output


def test_init_refuses_existing_path(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["init", path])
    assert r.exit_code == 1
    assert "E_BUNDLE_EXISTS" in r.output


def test_unknown_persona_and_version(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["persona", path, "Astronaut"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_PERSONA" in r.output

    r = runner.invoke(app, ["restore", path, "9"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_VERSION" in r.output


def test_add_input_needs_exactly_one_source(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["add-input", path])
    assert r.exit_code == 2
    assert "E_INPUT_SOURCE" in r.output


def test_unknown_format(tmp_path):
    path = _init(tmp_path)
    r = runner.invoke(app, ["versions", path, "--format", "xml"])
    assert r.exit_code == 2


class CannedGateway:
    def __init__(self, reply=None, error=None):
        self._reply = reply
        self._error = error

    async def submit(self, request, *, on_progress=None):
        if self._error is not None:
            raise self._error
        return self._reply


def test_analyze_reports_typed_failure_code(tmp_path, monkeypatch):
    path = _init(tmp_path)
    _add_text(path)
    monkeypatch.setattr("inputforge.cli.build_gateway", lambda settings: CannedGateway(reply='{"summary": 1}'))

    r = runner.invoke(app, ["analyze", path, "--backend", "mock"])
    assert r.exit_code == 2
    assert "E_PARSE_SCHEMA" in r.output
    assert "E_ANALYSIS_FAILED" not in r.output


def test_analyze_cancelled_by_gateway_is_quiet(tmp_path, monkeypatch):
    path = _init(tmp_path)
    _add_text(path)
    gw = CannedGateway(error=gateway_error("cancelled", "stopped"))
    monkeypatch.setattr("inputforge.cli.build_gateway", lambda settings: gw)

    r = runner.invoke(app, ["analyze", path, "--backend", "mock"])
    assert r.exit_code == 0
    assert "cancelled" in r.stdout

    r = runner.invoke(app, ["versions", path, "--format", "json"])
    assert json.loads(r.stdout)["versions"] == []
