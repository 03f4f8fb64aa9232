"""Tests for the userop CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner
from directory_mock import MockDirectoryContext

from user_operator.cli import cli
from user_operator.identity import ResourceIdentity
from user_operator.state import Attribute
from user_operator.state_store import StateStore

POOL_ID = "eu-west-1_pool"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def write_spec(path: Path, **overrides: Any) -> Path:
    data: dict[str, Any] = {"username": "alice", "userPoolId": POOL_ID}
    data.update(overrides)
    path.write_text(yaml.safe_dump(data))
    return path


def invoke(runner: CliRunner, *args: str) -> Any:
    return runner.invoke(cli, ["--region", "eu-west-1", *args])


class TestApply:
    """Tests for `userop apply`."""

    def test_apply_creates_user(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        spec = write_spec(tmp_path / "alice.yaml", groups=["admins"])

        result = invoke(runner, "apply", str(spec))

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        assert output["action"] == "create"
        assert output["id"] == f"{POOL_ID}/alice"
        assert output["groups"] == ["admins"]

    def test_apply_records_state(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        spec = write_spec(tmp_path / "alice.yaml", groups=["a"])
        state_dir = tmp_path / "state"
        state_dir.mkdir()

        invoke(runner, "--state-dir", str(state_dir), "apply", str(spec))
        write_spec(spec, groups=["b"])
        mock_directory.directory.calls.clear()
        result = invoke(runner, "--state-dir", str(state_dir), "apply", str(spec))

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["action"] == "update"
        assert mock_directory.directory.mutating_calls() == ["AddToGroup:b", "RemoveFromGroup:a"]
        stored = StateStore(state_dir).load("alice")
        assert stored is not None and stored.applied is not None
        assert stored.applied.groups == {"b"}

    def test_apply_conflicting_passwords(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        spec = write_spec(
            tmp_path / "alice.yaml",
            temporaryPassword="Temp#1234",
            permanentPassword="Perm#1234",
        )

        result = invoke(runner, "apply", str(spec))

        assert result.exit_code == 1
        assert "mutually exclusive" in result.output
        assert mock_directory.directory.calls == []

    def test_missing_region(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        spec = write_spec(tmp_path / "alice.yaml")

        result = runner.invoke(cli, ["apply", str(spec)], env={"AWS_REGION": "", "AWS_DEFAULT_REGION": ""})

        assert result.exit_code == 1
        assert "region" in result.output


class TestPlan:
    def test_plan_makes_no_changes(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        mock_directory.directory.add_user(POOL_ID, "alice", groups={"a"})
        spec = write_spec(tmp_path / "alice.yaml", groups=["b"])

        result = invoke(runner, "plan", str(spec))

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        assert output["action"] == "update"
        assert output["calls"] == ["AddToGroup:b", "RemoveFromGroup:a"]
        assert mock_directory.directory.mutating_calls() == []


class TestRead:
    def test_read_present(self, runner: CliRunner, mock_directory: MockDirectoryContext) -> None:
        mock_directory.directory.add_user(
            POOL_ID, "alice", attributes=[Attribute("email", "alice@example.com")]
        )

        result = invoke(runner, "read", f"{POOL_ID}/alice")

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        assert output["state"] == "present"
        assert output["status"] == "CONFIRMED"
        assert output["userAttributes"] == [{"name": "email", "value": "alice@example.com"}]

    def test_read_absent(self, runner: CliRunner, mock_directory: MockDirectoryContext) -> None:
        result = invoke(runner, "read", f"{POOL_ID}/alice")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["state"] == "absent"

    def test_read_malformed_id(self, runner: CliRunner, mock_directory: MockDirectoryContext) -> None:
        result = invoke(runner, "read", "bad")

        assert result.exit_code == 2
        assert "user_pool_id/username" in result.output


class TestImport:
    def test_import_prints_declaration(
        self, runner: CliRunner, mock_directory: MockDirectoryContext, tmp_path: Path
    ) -> None:
        mock_directory.directory.add_user(POOL_ID, "alice", groups={"admins"})
        state_dir = tmp_path / "state"
        state_dir.mkdir()

        result = invoke(
            runner, "--state-dir", str(state_dir), "import", f"{POOL_ID}/alice", "--name", "alice"
        )

        assert result.exit_code == 0, result.output
        output = json.loads(result.output)
        assert output["userPoolId"] == POOL_ID
        assert output["groups"] == ["admins"]
        stored = StateStore(state_dir).load("alice")
        assert stored is not None
        assert stored.identity == ResourceIdentity(POOL_ID, "alice")

    def test_import_missing_user(
        self, runner: CliRunner, mock_directory: MockDirectoryContext
    ) -> None:
        result = invoke(runner, "import", f"{POOL_ID}/alice")

        assert result.exit_code == 1
        assert "no longer exists" in result.output

    def test_import_malformed_id(
        self, runner: CliRunner, mock_directory: MockDirectoryContext
    ) -> None:
        result = invoke(runner, "import", "bad")

        assert result.exit_code == 1
        assert "user_pool_id/username" in result.output


class TestDelete:
    def test_delete_twice(self, runner: CliRunner, mock_directory: MockDirectoryContext) -> None:
        mock_directory.directory.add_user(POOL_ID, "alice")

        first = invoke(runner, "delete", f"{POOL_ID}/alice")
        second = invoke(runner, "delete", f"{POOL_ID}/alice")

        assert first.exit_code == 0
        assert "Deleted" in first.output
        assert second.exit_code == 0
        assert "already absent" in second.output
