import json

import pytest
from loguru import logger
from typer.testing import CliRunner

from lcapbridge import __version__
from lcapbridge.cli.commands import _parse_arg, app
from lcapbridge.cli.demo import run_demo
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.errors import NameNotAllowedError

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reenable_logging():
    yield
    logger.enable("lcapbridge")


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_check_name_allowed_and_denied(config_home):
    ok = runner.invoke(app, ["check-name", "_RB.selectQuery"])
    assert ok.exit_code == 0
    assert "is allowed" in ok.stdout

    denied = runner.invoke(app, ["check-name", "_RBX.selectQuery"])
    assert denied.exit_code == 1
    assert "not allowed" in denied.stdout


def test_config_init_then_show(config_home):
    result = runner.invoke(
        app,
        ["config", "init", "--platform-url", "https://platform.example.com/app", "--trusted-origin", "http://localhost:5173"],
    )
    assert result.exit_code == 0
    path = config_home / ".lcapbridge" / "config.json"
    data = json.loads(path.read_text())
    assert data["client"]["targetOrigin"] == "https://platform.example.com"
    assert data["server"]["trustedOrigin"] == "http://localhost:5173"

    again = runner.invoke(app, ["config", "init"])
    assert again.exit_code == 1

    shown = runner.invoke(app, ["config", "show", "--json"])
    assert shown.exit_code == 0
    assert json.loads(shown.stdout)["client"]["platformUrl"] == "https://platform.example.com/app"


def test_invalid_config_is_reported(config_home):
    path = config_home / ".lcapbridge" / "config.json"
    path.parent.mkdir(parents=True)
    path.write_text("{broken")
    result = runner.invoke(app, ["check-name", "_RB.x"])
    assert result.exit_code == 1
    assert "Failed to load config" in result.stdout


def test_demo_command(config_home):
    result = runner.invoke(app, ["demo"])
    assert result.exit_code == 0, result.stdout
    assert "_RB.selectQuery" in result.stdout
    assert "NAME_NOT_ALLOWED" in result.stdout


@pytest.mark.asyncio
async def test_run_demo_outcomes():
    lines = []
    outcomes = dict(await run_demo(BridgeConfig(), on_line=lambda label, value: lines.append(label)))
    assert outcomes["_RB.selectQuery"] == [[1, "Intro"], [2, "Contacts"], [3, "Escalation"]]
    assert outcomes["_RB.countRows"] == 3
    assert outcomes["_RB.eachRow"] == 3
    assert outcomes["rbf_getViewPage"] == {"viewId": "v-42", "title": "View v-42"}
    assert isinstance(outcomes["window.alert"], NameNotAllowedError)
    assert outcomes["callbacks"] == ["Intro", "Contacts", "Escalation"]
    assert lines[0] == "ready"


@pytest.mark.relay
def test_call_reports_relay_failure_as_json(config_home):
    result = runner.invoke(app, ["call", "_RB.countRows", "Section", "--relay-url", "ws://127.0.0.1:9"])
    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["error"] == "RELAY_ERROR"
    assert payload["category"] == "connection"


def test_call_arguments_are_json_when_possible():
    assert _parse_arg('["id", "name"]') == ["id", "name"]
    assert _parse_arg("100") == 100
    assert _parse_arg("true") is True
    assert _parse_arg("Section") == "Section"
