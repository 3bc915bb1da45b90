"""Tests for team roster loading."""

import json

import pytest

from team_order.roster import DEFAULT_MEMBER_COUNT, default_roster, load_roster, parse_roster


class TestParseRoster:
    def test_text_file(self, tmp_path):
        path = tmp_path / "team.txt"
        path.write_text("Alice\n\n  Bob  \n")
        assert [(p.id, p.name) for p in parse_roster(path)] == [("member-1", "Alice"), ("member-2", "Bob")]

    def test_json_file(self, tmp_path):
        path = tmp_path / "team.json"
        path.write_text(json.dumps({"members": ["Alice", None, "Bob"]}))
        assert [p.name for p in parse_roster(path)] == ["Alice", "Bob"]

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "team.yaml"
        path.write_text("members:\n  - Alice\n  - Bob\n")
        assert [p.name for p in parse_roster(path)] == ["Alice", "Bob"]

    @pytest.mark.parametrize("content", ['["Alice"]', '{"people": ["Alice"]}'])
    def test_json_without_members_list(self, tmp_path, content):
        path = tmp_path / "team.json"
        path.write_text(content)
        with pytest.raises(ValueError):
            parse_roster(path)


class TestLoadRoster:
    def test_default_roster(self):
        roster = default_roster()
        assert len(roster) == DEFAULT_MEMBER_COUNT
        assert roster[0].name == "Member 1"
        assert roster[-1].id == f"member-{DEFAULT_MEMBER_COUNT}"

    def test_no_sources_uses_default(self):
        assert load_roster() == default_roster()
        assert load_roster([None]) == default_roster()

    def test_first_non_empty_source_wins(self, tmp_path):
        empty = tmp_path / "empty.txt"
        empty.write_text("\n")
        team = tmp_path / "team.txt"
        team.write_text("Alice\n")
        assert [p.name for p in load_roster([empty, team])] == ["Alice"]

    def test_broken_sources_fall_back(self, tmp_path, caplog):
        broken = tmp_path / "team.json"
        broken.write_text("{not json")
        roster = load_roster([tmp_path / "missing.txt", broken])
        assert roster == default_roster()
        assert "Could not load roster" in caplog.text

    def test_invalid_yaml_falls_back(self, tmp_path):
        path = tmp_path / "team.yaml"
        path.write_text("members: [Alice\n")
        assert load_roster([path]) == default_roster()
