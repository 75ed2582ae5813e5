"""Tests for catalog validation, import and export."""

from datetime import date

import pytest
import yaml

from daily_requests.catalog import (
    CatalogImporter,
    export_catalog,
    import_catalog_file,
    load_catalog,
    write_catalog,
)
from daily_requests.validators import ValidationError, validate_catalog

from conftest import PROJECT_ROOT, SESSION_TEMPLATE

SAMPLE_CATALOG = PROJECT_ROOT / "configs" / "sample_catalog.yaml"


def catalog(**account_overrides) -> dict:
    account = {
        "name": "alice",
        "start_date": "2025-01-01",
        "start_time": "09:00",
        "request_template": SESSION_TEMPLATE,
    }
    account.update(account_overrides)
    return {
        "games": [
            {
                "name": "Idle Quest",
                "levels": [
                    {"event_token": "lvl01_day0", "level_name": "L1", "days_offset": 0, "time_spent": 30},
                    {"event_token": "lvl02_day4", "level_name": "L2", "days_offset": 4, "time_spent": 70},
                ],
                "purchase_events": [
                    {"event_token": "starter_pack", "is_restricted": True, "max_days_offset": 7},
                    {"event_token": "gem_bundle"},
                ],
                "accounts": [account],
            }
        ]
    }


class TestCatalogValidation:
    """Tests for catalog validation rules."""

    def test_sample_catalog_is_valid(self):
        assert validate_catalog(load_catalog(SAMPLE_CATALOG)) == []

    def test_valid_catalog(self):
        assert validate_catalog(catalog()) == []

    def test_empty_catalog(self):
        assert validate_catalog({}) == ["catalog must contain a non-empty 'games' list"]

    def test_level_rules(self):
        data = catalog()
        data["games"][0]["levels"] = [
            {"event_token": "bad token!", "level_name": "", "days_offset": -1, "time_spent": 0},
            {"event_token": "dup", "level_name": "A", "days_offset": 0, "time_spent": 1},
            {"event_token": "dup", "level_name": "B", "days_offset": 0, "time_spent": 1},
        ]
        errors = validate_catalog(data)

        assert any("levels[0].event_token" in e for e in errors)
        assert "games[0].levels[0].level_name is required" in errors
        assert "games[0].levels[0].days_offset must be a non-negative integer" in errors
        assert "games[0].levels[0].time_spent must be a positive integer" in errors
        assert any("duplicate token 'dup'" in e for e in errors)

    def test_name_length(self):
        errors = validate_catalog(catalog(name="x" * 101))
        assert errors == ["games[0].accounts[0].name must be at most 100 characters"]

    def test_account_dates_and_times(self):
        errors = validate_catalog(catalog(start_date="01/01/2025", start_time="9am"))

        assert any("start_date '01/01/2025'" in e for e in errors)
        assert any("start_time must be a quoted HH:MM" in e for e in errors)

    def test_unquoted_yaml_date_is_accepted(self):
        assert validate_catalog(catalog(start_date=date(2025, 1, 1))) == []

    def test_short_start_date(self):
        assert validate_catalog(catalog(start_date="14-Dec"), today=date(2025, 1, 1)) == []

    def test_template_required(self):
        errors = validate_catalog(catalog(request_template="  "))
        assert errors == ["games[0].accounts[0]: request_template or request_template_file is required"]

    def test_restricted_purchase_progress(self):
        errors = validate_catalog(catalog(purchase_progress=[
            {"event_token": "starter_pack", "days_offset": 7},
            {"event_token": "gem_bundle", "days_offset": 30},
            {"event_token": "unknown", "days_offset": 1},
        ]))

        assert "games[0].accounts[0].purchase_progress[0].days_offset (7) must be less than 7" in errors
        assert any("'unknown' is not a purchase event" in e for e in errors)
        assert len(errors) == 2

    def test_unknown_completed_level(self):
        errors = validate_catalog(catalog(completed_levels=["lvl01_day0", "nope"]))
        assert errors == ["games[0].accounts[0].completed_levels: unknown level 'nope'"]

    def test_null_sections_are_empty(self):
        data = catalog(completed_levels=None, purchase_progress=None)
        data["games"][0]["levels"] = None
        data["games"][0]["purchase_events"] = None

        assert validate_catalog(data) == []

    def test_non_mapping_entries_are_reported(self):
        data = catalog(purchase_progress=["gem_bundle"])
        data["games"][0]["levels"].append("lvl03")
        data["games"][0]["accounts"].append("bob")

        errors = validate_catalog(data)

        assert errors == [
            "games[0].levels[2] must be a mapping",
            "games[0].accounts[0].purchase_progress[0] must be a mapping",
            "games[0].accounts[1] must be a mapping",
        ]

    def test_non_list_sections_are_reported(self):
        data = catalog(completed_levels="lvl01_day0")
        data["games"][0]["purchase_events"] = {"event_token": "gem_bundle"}

        errors = validate_catalog(data)

        assert errors == [
            "games[0].purchase_events must be a list",
            "games[0].accounts[0].completed_levels must be a list",
        ]

    def test_unhashable_tokens(self):
        data = catalog(purchase_progress=[{"event_token": ["gem_bundle"], "days_offset": 1}])
        data["games"][0]["levels"][0]["event_token"] = ["lvl01_day0"]

        errors = validate_catalog(data)

        assert "games[0].levels[0].event_token is required" in errors
        assert any("purchase_progress[0].event_token" in e for e in errors)

    def test_catalog_must_be_mapping(self):
        assert validate_catalog(["games"]) == ["catalog must be a mapping"]


class TestCatalogImport:
    """Tests for importing catalogs into a store."""

    def test_import_creates_records(self, store):
        data = catalog(
            completed_levels=["lvl01_day0"],
            purchase_progress=[{"event_token": "gem_bundle", "days_offset": 2, "time_spent": 45}],
        )
        stats = CatalogImporter(store).import_catalog(data)

        assert stats == {
            "games_created": 1,
            "levels_created": 2,
            "purchase_events_created": 2,
            "accounts_created": 1,
            "levels_completed": 1,
            "purchase_progress_scheduled": 1,
        }

        game = store.get_game_by_name("Idle Quest")
        account = store.get_accounts_by_game(game.id)[0]
        assert account.request_template == SESSION_TEMPLATE

        level_progress = store.get_account_level_progress(account.id)
        assert [p.is_completed for p in level_progress] == [True]

        progress = store.get_account_purchase_event_progress(account.id)
        assert (progress[0].days_offset, progress[0].time_spent) == (2, 45)

    def test_purchase_time_spent_defaults_to_interpolation(self, store):
        data = catalog(purchase_progress=[{"event_token": "gem_bundle", "days_offset": 2}])
        CatalogImporter(store).import_catalog(data)

        game = store.get_game_by_name("Idle Quest")
        account = store.get_accounts_by_game(game.id)[0]
        # halfway between 30 (day 0) and 70 (day 4)
        assert store.get_account_purchase_event_progress(account.id)[0].time_spent == 50

    def test_reimport_updates_in_place(self, store):
        importer = CatalogImporter(store)
        importer.import_catalog(catalog())

        data = catalog(start_time="10:15")
        data["games"][0]["levels"][0]["time_spent"] = 35
        stats = importer.import_catalog(data)

        assert stats == {
            "levels_updated": 2,
            "purchase_events_updated": 2,
            "accounts_updated": 1,
        }
        game = store.get_game_by_name("Idle Quest")
        assert store.get_level_by_token(game.id, "lvl01_day0").time_spent == 35
        assert store.get_accounts_by_game(game.id)[0].start_time == "10:15"
        assert len(store.get_games()) == 1

    def test_invalid_catalog_imports_nothing(self, store):
        with pytest.raises(ValidationError):
            CatalogImporter(store).import_catalog(catalog(start_time="late"))

        assert store.get_games() == []

    def test_null_sections_import(self, store):
        data = catalog(completed_levels=None)
        data["games"][0]["purchase_events"] = None

        stats = CatalogImporter(store).import_catalog(data)

        assert stats["levels_created"] == 2
        assert stats["accounts_created"] == 1
        assert "purchase_events_created" not in stats

    def test_malformed_entries_are_rejected(self, store):
        data = catalog()
        data["games"][0]["levels"].append("lvl03")

        with pytest.raises(ValidationError) as exc_info:
            CatalogImporter(store).import_catalog(data)

        assert exc_info.value.errors == ["games[0].levels[2] must be a mapping"]
        assert store.get_games() == []

    def test_invalid_yaml_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("games: [\n  - name: x\n", encoding="utf-8")

        with pytest.raises(ValidationError) as exc_info:
            load_catalog(path)

        assert "invalid YAML" in exc_info.value.errors[0]

    def test_missing_template_file(self, store, tmp_path):
        data = catalog(request_template=None, request_template_file="missing.txt")

        with pytest.raises(ValidationError) as exc_info:
            CatalogImporter(store, base_dir=tmp_path).import_catalog(data)

        assert exc_info.value.errors == ["request template file not found: missing.txt"]

    def test_sample_catalog_file(self, store):
        stats = import_catalog_file(store, SAMPLE_CATALOG)

        assert stats["games_created"] == 2
        assert stats["accounts_created"] == 3

        game = store.get_game_by_name("Idle Quest")
        alice = next(a for a in store.get_accounts_by_game(game.id) if a.name == "alice")
        assert alice.request_template.startswith("POST /session HTTP/1.1")
        assert "{event_token}" in alice.request_template


class TestCatalogExport:
    """Tests for exporting catalogs."""

    def test_round_trip(self, store, tmp_path):
        data = catalog(
            completed_levels=["lvl01_day0"],
            purchase_progress=[{"event_token": "starter_pack", "days_offset": 3, "time_spent": 40}],
        )
        CatalogImporter(store).import_catalog(data)
        game = store.get_game_by_name("Idle Quest")

        path = tmp_path / "out" / "catalog.yaml"
        write_catalog(path, export_catalog(store, game.id))
        exported = yaml.safe_load(path.read_text(encoding="utf-8"))

        game_data = exported["games"][0]
        assert game_data["name"] == "Idle Quest"
        assert [l["event_token"] for l in game_data["levels"]] == ["lvl01_day0", "lvl02_day4"]
        assert game_data["purchase_events"][0] == {
            "event_token": "starter_pack",
            "is_restricted": True,
            "max_days_offset": 7,
        }
        account = game_data["accounts"][0]
        assert account["request_template"] == SESSION_TEMPLATE
        assert account["completed_levels"] == ["lvl01_day0"]
        assert account["purchase_progress"] == [
            {"event_token": "starter_pack", "days_offset": 3, "time_spent": 40}
        ]

        # the exported file imports cleanly into a fresh store
        assert validate_catalog(exported) == []

    def test_unknown_game(self, store):
        with pytest.raises(ValidationError):
            export_catalog(store, 42)
