"""YAML catalog import and export.

A catalog describes games with their levels, purchase events and accounts::

    games:
      - name: Idle Quest
        levels:
          - {event_token: lvl01_day0, level_name: L1, days_offset: 0, time_spent: 30}
        purchase_events:
          - {event_token: buy_gems, is_restricted: true, max_days_offset: 10}
        accounts:
          - name: alice
            start_date: "2025-01-01"
            start_time: "09:00"
            request_template_file: templates/session.txt
            completed_levels: [lvl01_day0]
            purchase_progress:
              - {event_token: buy_gems, days_offset: 5, time_spent: 40}

`request_template_file` paths are resolved relative to the catalog file.
"""

from collections import Counter
from datetime import date
from pathlib import Path
from typing import Any, Optional

import yaml

from .durations import interpolate_time_spent
from .models import (
    Account,
    Level,
    UpdateAccountRequest,
    UpdateLevelRequest,
    UpdatePurchaseEventRequest,
)
from .storage import SQLiteStore
from .validators import CatalogValidator, ValidationError


def load_catalog(path: Path) -> dict:
    """Load a catalog YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError([f"{path}: invalid YAML: {e}"]) from e


def write_catalog(path: Path, catalog: dict) -> None:
    """Write a catalog to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(catalog, f, sort_keys=False, allow_unicode=True)


def _as_text(value: Any) -> str:
    # YAML turns unquoted ISO dates into date objects.
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class CatalogImporter:
    """Imports a validated catalog into a store, updating existing records."""

    def __init__(self, store: SQLiteStore, base_dir: Optional[Path] = None):
        self.store = store
        self.base_dir = base_dir or Path(".")
        self.stats: Counter = Counter()

    def import_catalog(self, catalog: dict, today: Optional[date] = None) -> dict[str, int]:
        """Validate and import a catalog.

        Returns:
            Counts of created/updated records keyed like ``levels_created``.

        Raises:
            ValidationError: if the catalog is invalid or a template file is missing.
        """
        CatalogValidator(catalog, today=today).validate_or_raise()
        self._check_template_files(catalog)

        self.stats = Counter()
        for game_data in catalog["games"]:
            self._import_game(game_data)
        return dict(self.stats)

    def _check_template_files(self, catalog: dict) -> None:
        missing = []
        for game_data in catalog["games"]:
            for account_data in game_data.get("accounts") or []:
                template_file = account_data.get("request_template_file")
                if template_file and not (self.base_dir / template_file).is_file():
                    missing.append(f"request template file not found: {template_file}")
        if missing:
            raise ValidationError(missing)

    def _import_game(self, game_data: dict) -> None:
        game = self.store.get_game_by_name(game_data["name"])
        if game is None:
            game_id = self.store.create_game(game_data["name"])
            self.stats["games_created"] += 1
        else:
            game_id = game.id

        for level_data in game_data.get("levels") or []:
            self._import_level(game_id, level_data)

        for event_data in game_data.get("purchase_events") or []:
            self._import_purchase_event(game_id, event_data)

        levels = self.store.get_levels_by_game(game_id)
        for account_data in game_data.get("accounts") or []:
            self._import_account(game_id, account_data, levels)

    def _import_level(self, game_id: int, data: dict) -> None:
        existing = self.store.get_level_by_token(game_id, data["event_token"])
        if existing is None:
            self.store.create_level(
                game_id,
                data["event_token"],
                data["level_name"],
                data["days_offset"],
                data["time_spent"],
                is_bonus=bool(data.get("is_bonus", False)),
            )
            self.stats["levels_created"] += 1
        else:
            self.store.update_level(UpdateLevelRequest(
                id=existing.id,
                level_name=data["level_name"],
                days_offset=data["days_offset"],
                time_spent=data["time_spent"],
                is_bonus=bool(data.get("is_bonus", False)),
            ))
            self.stats["levels_updated"] += 1

    def _import_purchase_event(self, game_id: int, data: dict) -> None:
        existing = self.store.get_purchase_event_by_token(game_id, data["event_token"])
        if existing is None:
            self.store.create_purchase_event(
                game_id,
                data["event_token"],
                is_restricted=bool(data.get("is_restricted", False)),
                max_days_offset=data.get("max_days_offset"),
            )
            self.stats["purchase_events_created"] += 1
        else:
            self.store.update_purchase_event(UpdatePurchaseEventRequest(
                id=existing.id,
                is_restricted=bool(data.get("is_restricted", False)),
                max_days_offset=data.get("max_days_offset"),
            ))
            self.stats["purchase_events_updated"] += 1

    def _read_template(self, data: dict) -> str:
        template_file = data.get("request_template_file")
        if template_file:
            return (self.base_dir / template_file).read_text(encoding="utf-8")
        return data["request_template"]

    def _import_account(self, game_id: int, data: dict, levels: list[Level]) -> None:
        template = self._read_template(data)
        start_date = _as_text(data["start_date"])

        existing = next(
            (a for a in self.store.get_accounts_by_game(game_id) if a.name == data["name"]),
            None,
        )
        if existing is None:
            account_id = self.store.create_account(
                game_id, data["name"], start_date, data["start_time"], template
            )
            self.stats["accounts_created"] += 1
        else:
            account_id = existing.id
            self.store.update_account(UpdateAccountRequest(
                id=account_id,
                start_date=start_date,
                start_time=data["start_time"],
                request_template=template,
            ))
            self.stats["accounts_updated"] += 1

        by_token = {level.event_token: level for level in levels}
        for token in data.get("completed_levels") or []:
            level = by_token.get(token)
            if level is None:
                continue
            self.store.ensure_level_progress(account_id, level.id)
            self.store.update_level_progress(account_id, level.id, True)
            self.stats["levels_completed"] += 1

        for progress in data.get("purchase_progress") or []:
            event = self.store.get_purchase_event_by_token(game_id, progress["event_token"])
            time_spent = progress.get("time_spent")
            if time_spent is None:
                time_spent = interpolate_time_spent(progress["days_offset"], levels)
            self.store.upsert_purchase_event_progress(
                account_id, event.id, progress["days_offset"], time_spent
            )
            self.stats["purchase_progress_scheduled"] += 1


def import_catalog_file(store: SQLiteStore, path: Path, today: Optional[date] = None) -> dict[str, int]:
    """Load a catalog file and import it."""
    catalog = load_catalog(path)
    importer = CatalogImporter(store, base_dir=path.parent)
    return importer.import_catalog(catalog, today=today)


def _export_account(store: SQLiteStore, account: Account, levels: list[Level]) -> dict:
    level_tokens = {level.id: level.event_token for level in levels}
    completed = [
        level_tokens[p.level_id]
        for p in store.get_account_level_progress(account.id)
        if p.is_completed and p.level_id in level_tokens
    ]

    events = {e.id: e.event_token for e in store.get_purchase_events_by_game(account.game_id)}
    purchase_progress = [
        {
            "event_token": events[p.purchase_event_id],
            "days_offset": p.days_offset,
            "time_spent": p.time_spent,
        }
        for p in store.get_account_purchase_event_progress(account.id)
        if p.purchase_event_id in events
    ]

    data = {
        "name": account.name,
        "start_date": account.start_date,
        "start_time": account.start_time,
        "request_template": account.request_template,
    }
    if completed:
        data["completed_levels"] = completed
    if purchase_progress:
        data["purchase_progress"] = purchase_progress
    return data


def export_catalog(store: SQLiteStore, game_id: int) -> dict:
    """Export one game with its levels, purchase events and accounts."""
    game = store.get_game(game_id)
    if game is None:
        raise ValidationError([f"Game with ID {game_id} not found"])

    levels = store.get_levels_by_game(game_id)
    return {
        "games": [
            {
                "name": game.name,
                "levels": [
                    {
                        "event_token": level.event_token,
                        "level_name": level.level_name,
                        "days_offset": level.days_offset,
                        "time_spent": level.time_spent,
                        "is_bonus": level.is_bonus,
                    }
                    for level in levels
                ],
                "purchase_events": [
                    {
                        "event_token": event.event_token,
                        "is_restricted": event.is_restricted,
                        "max_days_offset": event.max_days_offset,
                    }
                    for event in store.get_purchase_events_by_game(game_id)
                ],
                "accounts": [
                    _export_account(store, account, levels)
                    for account in store.get_accounts_by_game(game_id)
                ],
            }
        ]
    }
