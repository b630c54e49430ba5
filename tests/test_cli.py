from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from browser_oracle.browser.recovery import save_session_state
from browser_oracle.cli import app
from browser_oracle.config import OracleConfig
from browser_oracle.errors import LockTimeout
from browser_oracle.models import RunResult


def _result() -> RunResult:
    return RunResult(
        answer_text="Answer",
        answer_markdown="**Answer**",
        took_ms=10,
        answer_tokens=2,
        answer_chars=6,
        user_data_dir="/tmp/profile",
    )


def _make_runner(state: dict[str, object], *, error: Exception | None = None):
    class DummyRunner:
        def __init__(self, config, *, log=None, verbose=False):
            state["config"] = config
            state["verbose"] = verbose

        async def run(self, prompt, attachments=()):
            state["prompt"] = prompt
            state["attachments"] = list(attachments)
            if error is not None:
                raise error
            return _result()

    return DummyRunner


def test_run_command_success(monkeypatch, tmp_path: Path) -> None:
    runner = CliRunner()
    attachment = tmp_path / "notes.txt"
    attachment.write_text("hello")

    load_args: dict[str, object] = {}

    def fake_load_config(path, *, env_file=None, **overrides):  # type: ignore[no-untyped-def]
        load_args["path"] = path
        load_args["overrides"] = overrides
        return OracleConfig.model_validate({})

    state: dict[str, object] = {}
    monkeypatch.setattr("browser_oracle.cli.load_config", fake_load_config)
    monkeypatch.setattr("browser_oracle.factory.BrowserRunner", _make_runner(state))

    result = runner.invoke(
        app,
        [
            "run",
            "Summarise this",
            "--file",
            str(attachment),
            "--url",
            "https://chat.example/",
            "--headless",
            "--timeout",
            "60",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "**Answer**" in result.stdout
    assert load_args["overrides"] == {
        "browser": {"url": "https://chat.example/", "headless": True, "timeout": 60.0}
    }
    assert state["prompt"] == "Summarise this"
    assert [item.filename for item in state["attachments"]] == ["notes.txt"]


def test_run_command_reports_failures(monkeypatch, tmp_path: Path) -> None:
    runner = CliRunner()
    state: dict[str, object] = {}
    monkeypatch.setattr(
        "browser_oracle.cli.load_config",
        lambda path, *, env_file=None, **overrides: OracleConfig.model_validate({}),
    )
    monkeypatch.setattr(
        "browser_oracle.factory.BrowserRunner",
        _make_runner(state, error=LockTimeout("busy")),
    )

    result = runner.invoke(app, ["run", "hello"])

    assert result.exit_code == 1
    assert "busy" in result.output


def test_run_command_rejects_missing_attachment(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["run", "hello", "--file", str(tmp_path / "nope.pdf")])
    assert result.exit_code != 0


def test_session_command_prints_saved_state(tmp_path: Path) -> None:
    save_session_state(tmp_path, "https://chatgpt.com/c/abc123", "prompt")

    result = CliRunner().invoke(app, ["session", str(tmp_path)])

    assert result.exit_code == 0
    assert '"conversationId": "abc123"' in result.stdout


def test_session_command_without_state(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["session", str(tmp_path)])
    assert result.exit_code == 1
