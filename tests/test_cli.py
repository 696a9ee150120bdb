"""Tests for the typer CLI: run, validate, config and --version."""

import json
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from promptchain.cli.commands.run import parse_vars
from promptchain.cli.main import app
from promptchain.version import __version__

runner = CliRunner()

CHAIN_YAML = """
name: Greeter
entry_node_id: ask
global_variables:
  - name: name
    type: string
    default_value: world
nodes:
  - id: ask
    type: prompt
    config:
      prompt_template_id: greet
    output_variable: reply
  - id: done
    type: output
edges:
  - id: e1
    source_node_id: ask
    target_node_id: done
"""

TEMPLATES_YAML = """
templates:
  - id: greet
    name: Greeting
    template: "Hello $name"
"""

FAILING_YAML = """
name: Broken
entry_node_id: t
nodes:
  - id: t
    type: transform
    config:
      transform_expression: "$missing + 1"
"""


@pytest.fixture
def chain_files(tmp_path):
    chain = tmp_path / "chain.yaml"
    chain.write_text(CHAIN_YAML)
    templates = tmp_path / "templates.yaml"
    templates.write_text(TEMPLATES_YAML)
    failing = tmp_path / "failing.yaml"
    failing.write_text(FAILING_YAML)
    return {"chain": chain, "templates": templates, "failing": failing}


def _json_payload(output: str) -> dict:
    # audit log lines are single-line JSON; the execution record is indented
    return json.loads(output[output.index("{\n"):])


# ── run ──────────────────────────────────────────────────────────────────────


def test_run_with_static_reply_prints_summary(chain_files):
    result = runner.invoke(app, [
        "run", str(chain_files["chain"]), "-t", str(chain_files["templates"]), "--reply", "hi",
    ])
    assert result.exit_code == 0, result.output
    assert "SUCCEEDED" in result.output
    assert "Greeter" in result.output


def test_run_json_output_and_vars(chain_files):
    result = runner.invoke(app, [
        "run", str(chain_files["chain"]), "-t", str(chain_files["templates"]),
        "--reply", "hi", "--var", 'name="Ada"', "--json",
    ])
    assert result.exit_code == 0, result.output
    payload = _json_payload(result.stdout)
    assert payload["status"] == "succeeded"
    assert payload["termination"] == "output_node"
    assert payload["variables"] == {"name": "Ada", "reply": "hi"}


def test_run_failing_chain_exits_1(chain_files):
    result = runner.invoke(app, ["run", str(chain_files["failing"]), "--reply", "x", "--json"])
    assert result.exit_code == 1
    assert _json_payload(result.stdout)["failed_node_id"] == "t"


def test_run_missing_template_fails_run(chain_files):
    result = runner.invoke(app, ["run", str(chain_files["chain"]), "--reply", "x"])
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_run_invalid_chain_exits_1(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("nodes:\n  - id: a\n    type: webhook\n")
    result = runner.invoke(app, ["run", str(bad), "--reply", "x"])
    assert result.exit_code == 1
    assert "Invalid chain" in result.output


def test_parse_vars():
    assert parse_vars(["n=3", "flag=true", "s=plain text", 'o={"k": 1}']) == {
        "n": 3, "flag": True, "s": "plain text", "o": {"k": 1},
    }
    with pytest.raises(typer.BadParameter):
        parse_vars(["novalue"])


# ── validate / config / version ──────────────────────────────────────────────


def test_validate_valid_chain(chain_files):
    result = runner.invoke(app, ["validate", str(chain_files["chain"])])
    assert result.exit_code == 0, result.output
    assert "valid" in result.output


def test_validate_reports_hard_errors(tmp_path):
    path = tmp_path / "loop.yaml"
    path.write_text(
        "name: L\nentry_node_id: l\nnodes:\n"
        "  - id: l\n    type: loop\n    config:\n      loop_variable: items\n"
    )
    result = runner.invoke(app, ["validate", str(path)])
    assert result.exit_code == 1
    assert "body_node_id" in result.output


def test_validate_missing_file(tmp_path):
    result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1


def test_config_masks_api_key(monkeypatch):
    monkeypatch.setenv("PROMPTCHAIN_LLM_API_KEY", "sk-secret-value-123")
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0, result.output
    assert "sk-secret-value-123" not in result.output


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_bundled_example_runs():
    examples = Path(__file__).resolve().parent.parent / "examples"
    result = runner.invoke(app, [
        "run", str(examples / "summarise.yaml"), "-t", str(examples / "templates.yaml"),
        "--var", "topic=rust", "--reply", "Rust is a systems language.", "--json",
    ])
    assert result.exit_code == 0, result.output
    payload = _json_payload(result.stdout)
    assert payload["visited"] == ["ask", "check", "shape", "done"]
    assert payload["variables"]["result"] == {
        "topic": "rust", "summary": "Rust is a systems language.",
    }
