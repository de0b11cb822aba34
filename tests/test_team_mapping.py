"""Tests for team_mapping: teams_match rules, AliasTable and suggestions."""

import json

import pytest

from lineintel.services import team_mapping
from lineintel.services.team_mapping import AliasTable, suggest_alias, teams_match


# ---------------------------------------------------------------------------
# teams_match
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("a, b", [
    ("Los Angeles Rams", "LA Rams"),               # shared nickname
    ("Kansas City Chiefs", "kansas city chiefs "),  # case / whitespace
    ("Kansas City Chiefs", "Chiefs"),               # containment
    ("KC", "Kansas City Chiefs"),                   # alias table
    ("Washington Football Team", "Washington Commanders"),
    ("Sixers", "Philadelphia 76ers"),
])
def test_teams_match_true(a, b):
    assert teams_match(a, b, AliasTable())


@pytest.mark.parametrize("a, b", [
    ("New York Jets", "New York Giants"),
    ("Los Angeles Lakers", "Los Angeles Clippers"),
    ("LA Rams", "LA Chargers"),
    ("", "Chiefs"),
    (None, "Chiefs"),
])
def test_teams_match_false(a, b):
    assert not teams_match(a, b, AliasTable())


def test_short_nickname_does_not_count():
    # Final-token rule needs more than 3 characters.
    assert not teams_match("Tampa Bay Sun", "Phoenix Sun", AliasTable({}))


def test_shared_abbreviation_does_not_bridge_groups():
    # "lac" is both Chargers and Clippers; that must not make them equal.
    table = AliasTable()
    assert table.same_group("lac", "los angeles chargers")
    assert table.same_group("lac", "los angeles clippers")
    assert not teams_match("Los Angeles Chargers", "Los Angeles Clippers", table)


# ---------------------------------------------------------------------------
# AliasTable
# ---------------------------------------------------------------------------

def test_alias_table_is_injectable():
    table = AliasTable({"Miami Dolphins": ["MIA", "Fins"]})
    assert teams_match("Fins", "Miami Dolphins", table)
    assert not teams_match("KC", "Kansas City Chiefs", table)


def test_extend_merges_into_existing_group():
    table = AliasTable()
    table.extend({"Kansas City Chiefs": ["KAN"]})
    assert table.same_group("kan", "kc")


def test_from_json_adds_to_defaults(tmp_path):
    path = tmp_path / "aliases.json"
    path.write_text(json.dumps({"buffalo bills": ["buf", "bills mafia"]}))
    table = AliasTable.from_json(str(path))
    assert teams_match("Bills Mafia", "BUF", table)
    assert teams_match("KC", "Kansas City Chiefs", table)


def test_from_json_rejects_non_object(tmp_path):
    path = tmp_path / "aliases.json"
    path.write_text("[]")
    with pytest.raises(ValueError):
        AliasTable.from_json(str(path))


def test_get_alias_table_falls_back_on_bad_file(tmp_path, monkeypatch):
    path = tmp_path / "aliases.json"
    path.write_text("{not json")
    monkeypatch.setenv("TEAM_ALIASES_PATH", str(path))
    team_mapping.reset_alias_table()
    try:
        table = team_mapping.get_alias_table()
        assert table.same_group("kc", "chiefs")
    finally:
        team_mapping.reset_alias_table()


# ---------------------------------------------------------------------------
# suggest_alias
# ---------------------------------------------------------------------------

def test_suggest_alias_finds_close_spelling():
    choices = ["Los Angeles Chargers", "Kansas City Chiefs", "Las Vegas Raiders"]
    assert suggest_alias("Kansas City Chiefs (KC)", choices) == "Kansas City Chiefs"


def test_suggest_alias_returns_none_below_cutoff():
    assert suggest_alias("Green Bay Packers", ["Miami Dolphins"]) is None
    assert suggest_alias("", ["Miami Dolphins"]) is None
