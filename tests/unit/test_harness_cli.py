# Needs: python-package:pytest>=8.0
import json

import pytest

import harness_cli
from model_harness.errors import ConnectivityError
from model_harness.runner import CaseOutcome, CaseResult, RunReport
from conftest import FIXTURES_DIR

ENV_VARS = (
    "OLLAMA_HOST",
    "OLLAMA_MAX_VRAM",
    "OLLAMA_NEW_ENGINE",
    "HARNESS_BASE_URL",
    "HARNESS_CAPACITY_BUDGET",
    "HARNESS_ENGINE_VARIANT",
    "HARNESS_SOFT_TIMEOUT",
    "HARNESS_HARD_TIMEOUT",
    "HARNESS_RUN_BUDGET",
    "HARNESS_REFERENCE_VECTORS",
    "HARNESS_START_SERVER",
)


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep the root logger owned by pytest
    monkeypatch.setattr(harness_cli, "setup_structured_logging", lambda *args, **kwargs: None)


def _report(*outcomes: CaseOutcome) -> RunReport:
    return RunReport(
        results=[
            CaseResult(case_id=f"generate/m{i}:latest", model=f"m{i}:latest", kind="generate",
                       outcome=outcome, detail="detail", duration_ms=1200.0)
            for i, outcome in enumerate(outcomes)
        ],
        duration_seconds=3.5,
    )


@pytest.mark.unit
def test_list_cases_prints_generation_cases(capsys):
    code = harness_cli.main(["list-cases", "--kind", "generate", "--engine-variant", "ollama"])

    lines = capsys.readouterr().out.splitlines()
    assert code == 0
    assert "generate/gemma3:1b" in lines
    assert "generate/tinyllama:latest" not in lines


@pytest.mark.unit
def test_list_cases_includes_embeddings_from_fixture(capsys):
    code = harness_cli.main([
        "list-cases",
        "--kind", "embed",
        "--reference-vectors", str(FIXTURES_DIR / "embed_reference.json"),
        "--model", "all-minilm:latest",
    ])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["embed/all-minilm:latest"]


@pytest.mark.unit
def test_missing_config_file_exits_with_fatal_code(tmp_path):
    assert harness_cli.main(["--config", str(tmp_path / "absent.yaml"), "list-cases"]) == 2


@pytest.mark.unit
def test_invalid_timeouts_exit_with_fatal_code(monkeypatch):
    async def fake_run_harness(config, **kwargs):
        config.timeouts()

    monkeypatch.setattr(harness_cli, "run_harness", fake_run_harness)

    assert harness_cli.main(["run", "--soft-timeout", "600", "--hard-timeout", "60"]) == 2


@pytest.mark.unit
def test_unreachable_service_exits_with_fatal_code(monkeypatch):
    async def fake_run_harness(config, **kwargs):
        raise ConnectivityError(f"no server reachable at {config.base_url}")

    monkeypatch.setattr(harness_cli, "run_harness", fake_run_harness)

    assert harness_cli.main(["run", "--url", "http://nowhere:1"]) == 2


@pytest.mark.unit
@pytest.mark.parametrize("outcomes, expected_code", [
    ((CaseOutcome.PASSED, CaseOutcome.SKIPPED_RESOURCE), 0),
    ((CaseOutcome.PASSED, CaseOutcome.FAILED), 1),
])
def test_run_exit_code_follows_report(monkeypatch, capsys, outcomes, expected_code):
    captured = {}

    async def fake_run_harness(config, **kwargs):
        captured["config"] = config
        captured.update(kwargs)
        return _report(*outcomes)

    monkeypatch.setattr(harness_cli, "run_harness", fake_run_harness)

    code = harness_cli.main(["run", "--capacity-budget", "8000000000", "--kind", "generate"])

    assert code == expected_code
    assert captured["config"].capacity_budget_bytes == 8_000_000_000
    assert captured["kinds"] == ("generate",)
    assert "MODEL HARNESS REPORT" in capsys.readouterr().out


@pytest.mark.unit
def test_no_subcommand_defaults_to_run_and_keeps_global_flags(monkeypatch, tmp_path):
    config_path = tmp_path / "harness.yaml"
    config_path.write_text("concurrency: 3\n", encoding="utf-8")
    captured = {}

    async def fake_run_harness(config, **kwargs):
        captured["config"] = config
        return _report(CaseOutcome.PASSED)

    monkeypatch.setattr(harness_cli, "run_harness", fake_run_harness)

    assert harness_cli.main(["--config", str(config_path)]) == 0
    assert captured["config"].concurrency == 3


@pytest.mark.unit
def test_run_writes_json_report(monkeypatch, tmp_path):
    output = tmp_path / "report.json"

    async def fake_run_harness(config, **kwargs):
        return _report(CaseOutcome.PASSED, CaseOutcome.SKIPPED_TIMEOUT)

    monkeypatch.setattr(harness_cli, "run_harness", fake_run_harness)

    assert harness_cli.main(["run", "--output", str(output)]) == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["summary"]["skipped_timeout"] == 1
    assert data["results"][0]["outcome"] == "passed"
