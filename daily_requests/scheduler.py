"""Daily request computation for a single account."""

from datetime import date
from random import Random
from typing import Callable, Optional, TypeVar

from .config import SchedulerConfig
from .dates import resolve_days_passed
from .durations import DurationSynthesizer, PurchaseDurationMode, RandomSource
from .errors import AccountNotFound, StorageError, UpstreamLookupFailure
from .models import DailyRequestsResponse, DueItem, MilestoneKind, RenderedRequest
from .selection import select_due_items
from .storage import Storage
from .templates import RenderMode, TemplateRenderer

T = TypeVar("T")


class DailyRequestScheduler:
    """Computes which milestones are due for an account and renders them.

    One call to `compute_daily_requests` reads the account, its game's
    levels and purchase events and the account's progress while holding the
    store session, then synthesizes a duration for every due item and renders
    it through the account's request template.
    """

    def __init__(
        self,
        store: Storage,
        rng: Optional[RandomSource] = None,
        purchase_duration: PurchaseDurationMode = PurchaseDurationMode.JITTER,
        render_mode: RenderMode = RenderMode.TEMPLATE,
        legacy_host: str = "localhost",
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.durations = DurationSynthesizer(rng, purchase_mode=purchase_duration)
        self.renderer = TemplateRenderer(render_mode, legacy_host=legacy_host)
        self.today = today or date.today

    @classmethod
    def from_config(
        cls,
        store: Storage,
        config: SchedulerConfig,
        seed: Optional[int] = None,
    ) -> "DailyRequestScheduler":
        """Build a scheduler from configuration; `seed` overrides the config seed."""
        if seed is None:
            seed = config.seed
        return cls(
            store,
            rng=Random(seed),
            purchase_duration=PurchaseDurationMode(config.purchase_duration),
            render_mode=RenderMode(config.render_mode),
            legacy_host=config.legacy_host,
        )

    def _read(self, operation: str, reader: Callable[..., T], *args) -> T:
        try:
            return reader(*args)
        except StorageError as e:
            raise UpstreamLookupFailure(operation, e) from e

    def compute_daily_requests(self, account_id: int, target_date: str) -> DailyRequestsResponse:
        """Compute the rendered requests due for an account on `target_date`.

        Raises:
            AccountNotFound: if the account does not exist.
            InvalidDateFormat: if the start or target date cannot be parsed.
            DateBeforeStart: if `target_date` precedes the account start date.
            UpstreamLookupFailure: if a storage read fails.
        """
        with self.store.session():
            account = self._read("get account", self.store.get_account, account_id)
            if account is None:
                raise AccountNotFound(account_id)

            days_passed = resolve_days_passed(
                account.start_date, target_date, today=self.today()
            )

            levels = self._read("get levels", self.store.get_levels_by_game, account.game_id)
            level_progress = self._read(
                "get level progress", self.store.get_account_level_progress, account.id
            )
            purchase_events = self._read(
                "get purchase events", self.store.get_purchase_events_by_game, account.game_id
            )
            purchase_progress = self._read(
                "get purchase event progress",
                self.store.get_account_purchase_event_progress,
                account.id,
            )

        due_items = select_due_items(
            levels, level_progress, purchase_events, purchase_progress, days_passed
        )

        template = self.renderer.template_for(account)
        requests: list[RenderedRequest] = []
        for item in due_items:
            time_spent = self._duration_for(item)
            requests.extend(
                self.renderer.render(item, time_spent, account, target_date, template=template)
            )

        return DailyRequestsResponse(
            account_id=account.id,
            account_name=account.name,
            target_date=target_date,
            days_passed=days_passed,
            requests=requests,
        )

    def _duration_for(self, item: DueItem) -> int:
        if item.kind == MilestoneKind.PURCHASE_EVENT:
            return self.durations.for_purchase_event(item.base_time_spent)
        return self.durations.for_level(item.base_time_spent)


def compute_daily_requests(
    store: Storage,
    account_id: int,
    target_date: str,
    rng: Optional[RandomSource] = None,
) -> DailyRequestsResponse:
    """Compute one account's daily requests with default settings."""
    scheduler = DailyRequestScheduler(store, rng=rng)
    return scheduler.compute_daily_requests(account_id, target_date)
