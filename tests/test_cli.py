"""Tests for the command line interface."""

from contextlib import asynccontextmanager
from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console

from docmigrate.cli import async_main, create_parser, main
from docmigrate.db.client import DatabaseClientError
from docmigrate.db.locks import LockManager

ENVIRONMENT = {
    "SURREAL_URL": "ws://localhost:8000/rpc",
    "SURREAL_NAMESPACE": "test",
    "SURREAL_USER": "root",
    "SURREAL_PASS": "root",
    "DOCMIGRATE_OWNER": "tester@host:1",
}

CLEARED = (
    "SURREAL_DATABASE",
    "SURREAL_CONNECT_TIMEOUT",
    "SURREAL_QUERY_TIMEOUT",
    "DOCMIGRATE_SCHEMA",
    "DOCMIGRATE_STATE_COLLECTION",
    "DOCMIGRATE_LOCK_COLLECTION",
    "DOCMIGRATE_LOCK_TTL",
    "DOCMIGRATE_DEBUG",
)


@pytest.fixture
def project(tmp_path, monkeypatch, sample_schema_text):
    """Working directory with a schema file and connection environment."""
    monkeypatch.chdir(tmp_path)
    for name, value in ENVIRONMENT.items():
        monkeypatch.setenv(name, value)
    for name in CLEARED:
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "docmigrate.schema").write_text(sample_schema_text)
    return tmp_path


@pytest.fixture
def opened(monkeypatch, fake_client):
    """Route open_client() to the in-memory database; records database ids."""
    databases = []

    @asynccontextmanager
    async def fake_open_client(config, database_id):
        databases.append(database_id)
        yield fake_client

    monkeypatch.setattr("docmigrate.cli.open_client", fake_open_client)
    return databases


@pytest.fixture
def console():
    return Console(file=StringIO(), width=200)


def output(console) -> str:
    return console.file.getvalue()


async def run(console, *argv) -> int:
    args = create_parser().parse_args(list(argv))
    return await async_main(args, console)


class TestParser:
    """Tests for argument parsing."""

    def test_apply_flags(self):
        """Test apply accepts --dry-run and --force."""
        args = create_parser().parse_args(["-v", "--database", "db1", "apply", "--dry-run", "--force"])

        assert args.command == "apply"
        assert args.dry_run is True
        assert args.force is True
        assert args.verbose is True
        assert args.database == "db1"

    def test_reset_flags(self):
        """Test reset accepts -y."""
        args = create_parser().parse_args(["reset", "-y"])
        assert args.yes is True
        assert args.force is False

    def test_command_required(self):
        """Test a subcommand is mandatory."""
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_status_has_no_dry_run(self):
        """Test read-only commands take no mutating flags."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["status", "--dry-run"])


class TestInit:
    """Tests for the init command."""

    @pytest.mark.asyncio
    async def test_init_creates_files(self, tmp_path, monkeypatch, console):
        """Test init writes the example files into the working directory."""
        monkeypatch.chdir(tmp_path)

        assert await run(console, "init") == 0

        assert (tmp_path / "docmigrate.schema").is_file()
        assert (tmp_path / "docmigrate.json").is_file()
        assert "docmigrate initialized" in output(console)

    def test_main_exits_with_code(self, tmp_path, monkeypatch):
        """Test main() exits with the command's status."""
        monkeypatch.chdir(tmp_path)

        with pytest.raises(SystemExit) as exc_info:
            main(["init"])

        assert exc_info.value.code == 0


class TestCommands:
    """Tests for commands against the in-memory database."""

    @pytest.mark.asyncio
    async def test_plan(self, project, opened, console, fake_client):
        """Test plan prints pending changes and writes nothing."""
        assert await run(console, "plan") == 0

        text = output(console)
        assert "+ collection Users (users)" in text
        assert "13 changes and 1 relationships pending" in text
        assert fake_client.collections == {}
        assert opened == ["test-db"]

    @pytest.mark.asyncio
    async def test_database_override(self, project, opened, console):
        """Test --database wins over the schema block."""
        await run(console, "--database", "other-db", "plan")
        assert opened == ["other-db"]

    @pytest.mark.asyncio
    async def test_apply_and_relationships(self, project, opened, console, fake_client):
        """Test both phases through the CLI."""
        assert await run(console, "apply") == 0
        assert "users" in fake_client.collections
        assert "Run 'docmigrate relationships'" in output(console)

        assert await run(console, "relationships") == 0
        assert "author" in fake_client.collections["blog-posts"]["attributes"]

    @pytest.mark.asyncio
    async def test_apply_dry_run(self, project, opened, console, fake_client):
        """Test dry-run leaves the database untouched."""
        assert await run(console, "apply", "--dry-run") == 0

        assert "Dry run - no changes made" in output(console)
        assert fake_client.collections == {}

    @pytest.mark.asyncio
    async def test_forced_failure_exit_code(self, project, opened, console, fake_client):
        """Test a forced run with failures exits non-zero."""
        fake_client.fail_on("create_integer_attribute", DatabaseClientError("boom", 500))

        assert await run(console, "apply", "--force") == 1
        assert "continuing, --force" in output(console)

    @pytest.mark.asyncio
    async def test_rollback(self, project, opened, console, fake_client):
        """Test rollback after apply."""
        await run(console, "apply")

        assert await run(console, "rollback") == 0
        assert "users" not in fake_client.collections

    @pytest.mark.asyncio
    async def test_status(self, project, opened, console):
        """Test status renders counts and locks."""
        await run(console, "apply")

        assert await run(console, "status") == 0

        text = output(console)
        assert "Migration status" in text
        assert "Collections: 2" in text
        assert "No locks held" in text

    @pytest.mark.asyncio
    async def test_reset_cancelled(self, project, opened, console):
        """Test reset asks for confirmation and can be declined."""
        with patch("docmigrate.cli.Prompt.ask", return_value="no"):
            assert await run(console, "reset") == 0

        assert "Reset cancelled." in output(console)
        assert opened == []

    @pytest.mark.asyncio
    async def test_reset_confirmed(self, project, opened, console):
        """Test typing reset confirms."""
        await run(console, "apply")

        with patch("docmigrate.cli.Prompt.ask", return_value="reset"):
            assert await run(console, "reset") == 0

        assert "Migration history reset (1 records deleted)" in output(console)

    @pytest.mark.asyncio
    async def test_reset_yes_skips_prompt(self, project, opened, console):
        """Test --yes skips the prompt."""
        with patch("docmigrate.cli.Prompt.ask") as ask:
            assert await run(console, "reset", "--yes") == 0

        ask.assert_not_called()


class TestErrors:
    """Tests for error reporting."""

    @pytest.mark.asyncio
    async def test_missing_schema(self, tmp_path, monkeypatch, opened, console):
        """Test schema commands fail cleanly without a schema file."""
        monkeypatch.chdir(tmp_path)
        for name, value in ENVIRONMENT.items():
            monkeypatch.setenv(name, value)
        monkeypatch.delenv("DOCMIGRATE_SCHEMA", raising=False)

        assert await run(console, "plan") == 1
        assert "Schema file not found" in output(console)
        assert opened == []

    @pytest.mark.asyncio
    async def test_missing_connection_settings(self, project, monkeypatch, opened, console):
        """Test missing settings are listed before connecting."""
        monkeypatch.delenv("SURREAL_NAMESPACE")
        monkeypatch.delenv("SURREAL_USER")

        assert await run(console, "status") == 1

        text = output(console)
        assert "SURREAL_NAMESPACE is required" in text
        assert "SURREAL_USER is required" in text
        assert opened == []

    @pytest.mark.asyncio
    async def test_lock_contention_reported(self, project, opened, console, fake_client):
        """Test a held lock is reported with its holder."""
        await fake_client.create_collection("dm_locks", "Migration Locks")
        await LockManager(fake_client, "dm_locks", owner="someone@else:9").acquire("apply")

        assert await run(console, "apply") == 1
        assert "held by someone@else:9" in output(console)
