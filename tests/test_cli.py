import json

import pytest
from loguru import logger

import fsaudit
from fsaudit import RuleResolver

AUDIT_REPLY = {
    "summary": "Everything is world readable and writable.",
    "vulnerabilities": [
        {
            "severity": "critical",
            "description": "public read/write",
            "recommendation": "restrict by auth",
            "location": "line 3",
        }
    ],
    "bestPractices": [],
    "overallRating": 2,
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "LOG_LEVEL", "FSAUDIT_MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(fsaudit, "load_dotenv", lambda *args, **kwargs: False)
    yield
    logger.remove()


@pytest.fixture
def rules_file(tmp_path, open_rules):
    path = tmp_path / "firestore.rules"
    path.write_text(open_rules, encoding="utf-8")
    return path


@pytest.fixture
def stub_model(monkeypatch):
    prompts = []

    async def fake_analyze(self, prompt, schema=None):
        prompts.append((prompt, schema))
        return json.dumps(AUDIT_REPLY) if schema is not None else "Free-form: rules are wide open."

    monkeypatch.setattr(fsaudit.GeminiAnalyzer, "analyze", fake_analyze)
    return prompts


def _forbid_resolve(self):
    raise AssertionError("rules must not be resolved")


def test_missing_project_exits_before_resolution(monkeypatch):
    monkeypatch.setattr(RuleResolver, "resolve", _forbid_resolve)

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["--api-key", "k"])

    assert excinfo.value.code == 1


def test_missing_project_with_rules_file_still_exits(monkeypatch, rules_file):
    monkeypatch.setattr(RuleResolver, "resolve", _forbid_resolve)

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["--rules-file", str(rules_file), "--api-key", "k"])

    assert excinfo.value.code == 1


def test_missing_api_key_exits(monkeypatch, rules_file):
    monkeypatch.setattr(RuleResolver, "resolve", _forbid_resolve)

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["-p", "demo", "-r", str(rules_file)])

    assert excinfo.value.code == 1


def test_end_to_end_with_rules_file(capsys, rules_file, open_rules, stub_model):
    fsaudit.main(["-p", "demo", "-r", str(rules_file), "--api-key", "k"])

    out = capsys.readouterr().out
    assert "CRITICAL" in out
    assert "public read/write" in out
    assert "2/10   " + "█" * 6 + "░" * 24 in out
    assert "Best Practices:" not in out
    prompt, schema = stub_model[0]
    assert open_rules in prompt
    assert "Project ID: demo" in prompt


def test_end_to_end_writes_output_file(capsys, tmp_path, rules_file, stub_model):
    target = tmp_path / "out" / "audit.json"

    fsaudit.main(["-p", "demo", "-r", str(rules_file), "--api-key", "k", "-o", str(target)])

    assert json.loads(target.read_text(encoding="utf-8")) == AUDIT_REPLY
    assert "public read/write" in capsys.readouterr().out


def test_text_mode_prints_raw_analysis(monkeypatch, capsys, rules_file, stub_model):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")

    fsaudit.main(["-p", "demo", "-r", str(rules_file), "--text", "--examples"])

    out = capsys.readouterr().out
    assert "Free-form: rules are wide open." in out
    assert "Security Rating" not in out
    assert stub_model[0][1] is None
    assert "Reference examples" in stub_model[0][0]


def test_rules_not_found_exits(monkeypatch, capsys, stub_model):
    def not_found(self):
        raise fsaudit.NotFoundError("Firestore security rules", self.project_id)

    monkeypatch.setattr(RuleResolver, "resolve", not_found)

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["-p", "demo", "--api-key", "k"])

    assert excinfo.value.code == 1
    assert stub_model == []
    assert capsys.readouterr().out == ""


def test_analysis_failure_exits_without_report(monkeypatch, capsys, tmp_path, rules_file):
    async def broken(self, prompt, schema=None):
        raise fsaudit.AnalysisError("Failed to audit rules: boom")

    monkeypatch.setattr(fsaudit.GeminiAnalyzer, "analyze", broken)
    target = tmp_path / "audit.txt"

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["-p", "demo", "-r", str(rules_file), "--api-key", "k", "-o", str(target)])

    assert excinfo.value.code == 1
    assert not target.exists()
    assert "Security Rating" not in capsys.readouterr().out


def test_unexpected_error_exits_with_one(monkeypatch, rules_file):
    def explode(self):
        raise RuntimeError("boom")

    monkeypatch.setattr(RuleResolver, "resolve", explode)

    with pytest.raises(SystemExit) as excinfo:
        fsaudit.main(["-p", "demo", "-r", str(rules_file), "--api-key", "k", "-v"])

    assert excinfo.value.code == 1


def test_log_file_receives_json_records(tmp_path, rules_file, stub_model):
    log_file = tmp_path / "logs" / "audit.log"

    fsaudit.main([
        "-p", "demo", "-r", str(rules_file), "--api-key", "k",
        "--log-file", str(log_file), "--log-level", "debug",
    ])
    logger.remove()

    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    messages = [r["record"]["message"] for r in records]
    assert "Starting Firestore security rules audit..." in messages
    assert "Audit completed successfully!" in messages
    assert any(r["record"]["level"]["name"] == "DEBUG" for r in records)


@pytest.mark.parametrize(
    "cli_level, env_level, expected",
    [("error", "debug", "error"), (None, "debug", "debug"), (None, "WARNING", "warn"), (None, "loud", "info"), (None, None, "info")],
)
def test_resolve_log_level(monkeypatch, cli_level, env_level, expected):
    if env_level:
        monkeypatch.setenv("LOG_LEVEL", env_level)

    assert fsaudit.resolve_log_level(cli_level) == expected
