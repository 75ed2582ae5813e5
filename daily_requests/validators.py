"""Configuration and catalog validators."""

import re
from datetime import date
from typing import Any, Optional

from .dates import parse_start_date
from .errors import DailyRequestsError, InvalidDateFormat

MAX_NAME_LENGTH = 100
EVENT_TOKEN_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
START_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")

OUTPUT_FORMATS = ("jsonl", "parquet", "both")
OUTPUT_COMPRESSIONS = ("gzip", "none")
PURCHASE_DURATION_MODES = ("jitter", "stored")
RENDER_MODES = ("template", "legacy")


class ValidationError(DailyRequestsError):
    """Configuration or catalog validation error."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {errors}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigValidator:
    """Validator for application configuration."""

    def __init__(self, config: dict):
        self.config = config
        self.errors: list[str] = []

    def validate(self) -> list[str]:
        """Run all validations and return list of errors."""
        self.errors = []

        self._validate_required_sections()
        self._validate_database()
        self._validate_scheduler()
        self._validate_output()

        return self.errors

    def validate_or_raise(self) -> None:
        """Run validation and raise exception if errors found."""
        errors = self.validate()
        if errors:
            raise ValidationError(errors)

    def _validate_required_sections(self) -> None:
        """Check that all required top-level sections exist."""
        for section in ("database", "scheduler", "output"):
            if section not in self.config:
                self.errors.append(f"Missing required section: {section}")

    def _validate_database(self) -> None:
        database = self.config.get("database", {})
        if "path" not in database:
            self.errors.append("database.path is required")
        elif not isinstance(database["path"], str) or not database["path"]:
            self.errors.append("database.path must be a non-empty string")

    def _validate_choice(self, section: dict, key: str, path: str, choices: tuple) -> None:
        if key in section and section[key] not in choices:
            self.errors.append(
                f"{path} must be one of {', '.join(choices)} (got {section[key]!r})"
            )

    def _validate_scheduler(self) -> None:
        scheduler = self.config.get("scheduler", {})

        seed = scheduler.get("seed")
        if seed is not None and not _is_int(seed):
            self.errors.append("scheduler.seed must be an integer or null")

        self._validate_choice(
            scheduler, "purchase_duration", "scheduler.purchase_duration", PURCHASE_DURATION_MODES
        )
        self._validate_choice(scheduler, "render_mode", "scheduler.render_mode", RENDER_MODES)

    def _validate_output(self) -> None:
        output = self.config.get("output", {})

        self._validate_choice(output, "format", "output.format", OUTPUT_FORMATS)
        self._validate_choice(output, "compression", "output.compression", OUTPUT_COMPRESSIONS)

        if "batch_size" in output:
            if not _is_int(output["batch_size"]) or output["batch_size"] < 1:
                self.errors.append("output.batch_size must be a positive integer")


class CatalogValidator:
    """Validator for YAML game catalogs."""

    def __init__(self, catalog: dict, today: Optional[date] = None):
        self.catalog = catalog
        self.today = today
        self.errors: list[str] = []

    def validate(self) -> list[str]:
        """Run all validations and return list of errors."""
        self.errors = []

        if not isinstance(self.catalog, dict):
            self.errors.append("catalog must be a mapping")
            return self.errors

        games = self.catalog.get("games")
        if not isinstance(games, list) or not games:
            self.errors.append("catalog must contain a non-empty 'games' list")
            return self.errors

        seen_names = set()
        for index, game in enumerate(games):
            path = f"games[{index}]"
            if not isinstance(game, dict):
                self.errors.append(f"{path} must be a mapping")
                continue

            name = game.get("name")
            self._validate_name(name, f"{path}.name")
            if isinstance(name, str):
                if name in seen_names:
                    self.errors.append(f"{path}.name: duplicate game '{name}'")
                seen_names.add(name)

            level_tokens = self._validate_levels(game.get("levels"), path)
            events = self._validate_purchase_events(game.get("purchase_events"), path)
            self._validate_accounts(game.get("accounts"), path, level_tokens, events)

        return self.errors

    def validate_or_raise(self) -> None:
        """Run validation and raise exception if errors found."""
        errors = self.validate()
        if errors:
            raise ValidationError(errors)

    def _sequence(self, value: Any, path: str) -> list:
        """Return a section as a list. An empty (null) section is an empty list."""
        if value is None:
            return []
        if not isinstance(value, list):
            self.errors.append(f"{path} must be a list")
            return []
        return value

    def _entries(self, value: Any, path: str) -> list[tuple[str, dict]]:
        """Return (path, mapping) pairs of a section, reporting other entries."""
        entries = []
        for index, entry in enumerate(self._sequence(value, path)):
            entry_path = f"{path}[{index}]"
            if not isinstance(entry, dict):
                self.errors.append(f"{entry_path} must be a mapping")
                continue
            entries.append((entry_path, entry))
        return entries

    def _validate_name(self, name: Any, path: str) -> None:
        if not isinstance(name, str) or not name.strip():
            self.errors.append(f"{path} is required")
        elif len(name) > MAX_NAME_LENGTH:
            self.errors.append(f"{path} must be at most {MAX_NAME_LENGTH} characters")

    def _validate_event_token(self, token: Any, path: str) -> None:
        if not isinstance(token, str) or not token.strip():
            self.errors.append(f"{path} is required")
        elif not EVENT_TOKEN_PATTERN.match(token):
            self.errors.append(f"{path} '{token}' may only contain letters, digits, '_' and '-'")

    def _validate_non_negative(self, value: Any, path: str) -> None:
        if not _is_int(value) or value < 0:
            self.errors.append(f"{path} must be a non-negative integer")

    def _validate_levels(self, levels: Any, game_path: str) -> set:
        tokens = set()
        for path, level in self._entries(levels, f"{game_path}.levels"):
            token = level.get("event_token")
            self._validate_event_token(token, f"{path}.event_token")
            if isinstance(token, str):
                if token in tokens:
                    self.errors.append(f"{path}.event_token: duplicate token '{token}'")
                tokens.add(token)

            level_name = level.get("level_name")
            if not isinstance(level_name, str) or not level_name.strip():
                self.errors.append(f"{path}.level_name is required")

            self._validate_non_negative(level.get("days_offset"), f"{path}.days_offset")

            time_spent = level.get("time_spent")
            if not _is_int(time_spent) or time_spent <= 0:
                self.errors.append(f"{path}.time_spent must be a positive integer")
        return tokens

    def _validate_purchase_events(self, events: Any, game_path: str) -> dict[str, dict]:
        by_token: dict[str, dict] = {}
        for path, event in self._entries(events, f"{game_path}.purchase_events"):
            token = event.get("event_token")
            self._validate_event_token(token, f"{path}.event_token")
            if isinstance(token, str) and token in by_token:
                self.errors.append(f"{path}.event_token: duplicate token '{token}'")

            max_days = event.get("max_days_offset")
            if max_days is not None:
                self._validate_non_negative(max_days, f"{path}.max_days_offset")

            if isinstance(token, str):
                by_token[token] = event
        return by_token

    def _validate_accounts(
        self, accounts: Any, game_path: str, level_tokens: set, events: dict[str, dict]
    ) -> None:
        for path, account in self._entries(accounts, f"{game_path}.accounts"):
            self._validate_name(account.get("name"), f"{path}.name")

            start_date = account.get("start_date")
            if isinstance(start_date, date):
                start_date = start_date.isoformat()
            if not isinstance(start_date, str) or not start_date:
                self.errors.append(f"{path}.start_date is required")
            else:
                try:
                    parse_start_date(start_date, today=self.today)
                except InvalidDateFormat:
                    self.errors.append(
                        f"{path}.start_date '{start_date}' must be YYYY-MM-DD or DD-Mon"
                    )

            start_time = account.get("start_time")
            if not isinstance(start_time, str) or not START_TIME_PATTERN.match(start_time):
                self.errors.append(f"{path}.start_time must be a quoted HH:MM or HH:MM:SS string")

            template = account.get("request_template")
            template_file = account.get("request_template_file")
            if template_file is not None and not isinstance(template_file, str):
                self.errors.append(f"{path}.request_template_file must be a string")
            elif not template_file and (not isinstance(template, str) or not template.strip()):
                self.errors.append(
                    f"{path}: request_template or request_template_file is required"
                )

            for token in self._sequence(account.get("completed_levels"), f"{path}.completed_levels"):
                if not isinstance(token, str) or token not in level_tokens:
                    self.errors.append(f"{path}.completed_levels: unknown level '{token}'")

            progress_entries = self._entries(account.get("purchase_progress"), f"{path}.purchase_progress")
            for p_path, progress in progress_entries:
                self._validate_purchase_progress(progress, p_path, events)

    def _validate_purchase_progress(self, progress: dict, path: str, events: dict[str, dict]) -> None:
        token = progress.get("event_token")
        if not isinstance(token, str) or token not in events:
            self.errors.append(f"{path}.event_token '{token}' is not a purchase event of this game")
            return

        days_offset = progress.get("days_offset")
        self._validate_non_negative(days_offset, f"{path}.days_offset")

        if "time_spent" in progress:
            self._validate_non_negative(progress["time_spent"], f"{path}.time_spent")

        event = events[token]
        max_days = event.get("max_days_offset")
        if (
            event.get("is_restricted", False)
            and _is_int(max_days)
            and _is_int(days_offset)
            and days_offset >= max_days
        ):
            self.errors.append(f"{path}.days_offset ({days_offset}) must be less than {max_days}")


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    validator = ConfigValidator(config)
    return validator.validate()


def validate_config_or_raise(config: dict) -> None:
    """Validate configuration and raise exception if errors found."""
    validator = ConfigValidator(config)
    validator.validate_or_raise()


def validate_catalog(catalog: dict, today: Optional[date] = None) -> list[str]:
    """Validate a catalog and return list of errors."""
    validator = CatalogValidator(catalog, today=today)
    return validator.validate()
