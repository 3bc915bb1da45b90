"""End-to-end tests for the team-order CLI against an in-process store."""

import json

import pytest
import toml
from typer.testing import CliRunner

from team_order import __version__
from team_order.cli import app
from team_order.sync.store import MemoryDocumentStore

runner = CliRunner()


@pytest.fixture
def shared_store(monkeypatch):
    """Every command invocation talks to the same in-process store."""
    store = MemoryDocumentStore()
    monkeypatch.setattr("team_order.cli.context.build_store", lambda config: store)
    return store


def invoke(*args):
    return runner.invoke(app, list(args))


class TestSessionFlow:
    def test_full_order_flow(self, shared_store, team_order_home):
        result = invoke("session", "create", "Alice", "--member", "Bob", "--session-id", "s1")
        assert result.exit_code == 0, result.output
        assert "Session s1 created" in result.output
        identity = json.loads((team_order_home / "sessions" / "s1.json").read_text())
        assert identity["role"] == "admin"

        result = invoke("session", "sources", "--restaurant", "1", "--drink-shop", "3")
        assert result.exit_code == 0, result.output
        assert "Sources selected" in result.output

        result = invoke("session", "advance")
        assert result.exit_code == 0, result.output
        assert shared_store.peek("sessions/s1")["phase"] == "ordering"

        result = invoke("order", "add", "restaurant", "101", "--name", "Beef Noodles", "--price", "120")
        assert result.exit_code == 0, result.output
        assert "Added 1 x Beef Noodles" in result.output

        result = invoke("order", "add", "drink", "7", "--name", "Tea", "--price", "30", "--sweetness", "5", "-q", "2")
        assert result.exit_code == 0, result.output
        assert "Added 2 x Tea" in result.output

        result = invoke("order", "list")
        assert result.exit_code == 0, result.output
        assert "Beef Noodles" in result.output

        result = invoke("session", "show")
        assert result.exit_code == 0, result.output
        assert "Alice" in result.output
        assert "ordering" in result.output

        result = invoke("session", "advance")
        assert result.exit_code == 0, result.output
        assert "closing_out" in result.output

        result = invoke("session", "finalize")
        assert result.exit_code == 0, result.output
        assert "saved to history" in result.output
        assert shared_store.peek("sessions/s1") == {}
        assert not (team_order_home / "sessions" / "s1.json").exists()

        result = invoke("history", "list")
        assert result.exit_code == 0, result.output
        assert "s1" in result.output

        result = invoke("history", "show", "s1")
        assert result.exit_code == 0, result.output
        assert "Total: 180" in result.output

    def test_create_uses_default_roster(self, shared_store):
        result = invoke("session", "create", "Alice", "--session-id", "s2")
        assert result.exit_code == 0, result.output
        names = [p["name"] for p in shared_store.peek("sessions/s2")["participants"]]
        assert names[0] == "Alice"
        assert "Member 9" in names

    def test_create_uses_roster_file(self, shared_store, tmp_path):
        roster = tmp_path / "team.txt"
        roster.write_text("Bob\nCarol\n")
        result = invoke("session", "create", "Alice", "--roster", str(roster), "--session-id", "s3")
        assert result.exit_code == 0, result.output
        names = [p["name"] for p in shared_store.peek("sessions/s3")["participants"]]
        assert names == ["Alice", "Bob", "Carol"]

    def test_member_cannot_advance(self, shared_store):
        invoke("session", "create", "Alice", "--member", "Bob", "--session-id", "s1")
        result = invoke("session", "join", "s1", "Bob")
        assert result.exit_code == 0, result.output
        assert "as Bob (member)" in result.output

        result = invoke("session", "advance")
        assert result.exit_code == 1
        assert "admin" in result.output

    def test_join_unknown_session(self, shared_store):
        result = invoke("session", "join", "nope", "Bob")
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_commands_need_a_session(self, shared_store):
        result = invoke("session", "sources", "-r", "1")
        assert result.exit_code == 1
        assert "No current session" in result.output

    def test_items_before_ordering_rejected(self, shared_store):
        invoke("session", "create", "Alice", "--session-id", "s1")
        result = invoke("order", "add", "restaurant", "1", "--name", "Rice", "--price", "10")
        assert result.exit_code == 1

    def test_custom_item_needs_name_and_price(self, shared_store):
        invoke("session", "create", "Alice", "--session-id", "s1")
        invoke("session", "sources", "-r", "1")
        invoke("session", "advance")
        result = invoke("order", "add", "restaurant", "1")
        assert result.exit_code == 1
        assert "--name and --price" in result.output

    def test_deadline_requires_value(self, shared_store):
        invoke("session", "create", "Alice", "--session-id", "s1")
        result = invoke("session", "deadline")
        assert result.exit_code == 1

    def test_deadline_set_and_clear(self, shared_store):
        invoke("session", "create", "Alice", "--session-id", "s1")
        result = invoke("session", "deadline", "2099-01-01T12:00:00Z")
        assert result.exit_code == 0, result.output
        assert shared_store.peek("sessions/s1")["deadline"].startswith("2099-01-01T12:00:00")

        result = invoke("session", "deadline", "--clear")
        assert result.exit_code == 0, result.output
        assert shared_store.peek("sessions/s1")["deadline"] is None


class TestConfigCommands:
    def test_set_server(self, team_order_home):
        result = invoke("config", "set-server", "https://orders.example.com/")
        assert result.exit_code == 0, result.output
        data = toml.load(team_order_home / "config.toml")
        assert data["sync"]["server_url"] == "https://orders.example.com"

    @pytest.mark.parametrize("url", ["orders.example.com", "ftp://orders.example.com", "http://"])
    def test_set_server_rejects_invalid(self, url):
        result = invoke("config", "set-server", url)
        assert result.exit_code == 1
        assert "Invalid server URL" in result.output

    def test_show(self):
        result = invoke("config", "show")
        assert result.exit_code == 0, result.output
        assert "server_url" in result.output


class TestStatusCommand:
    def test_status_without_session(self, shared_store):
        result = invoke("status")
        assert result.exit_code == 0, result.output
        assert "Pending" in result.output
        assert "None" in result.output

    def test_status_check_reports_connection(self, shared_store):
        invoke("session", "create", "Alice", "--session-id", "s1")
        result = invoke("status", "--check")
        assert result.exit_code == 0, result.output
        assert "Connected" in result.output
        assert "s1 as Alice" in result.output

    def test_status_check_offline(self, shared_store):
        shared_store.available = False
        result = invoke("status", "--check")
        assert result.exit_code == 0, result.output
        assert "Offline" in result.output


class TestGlobalOptions:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output
