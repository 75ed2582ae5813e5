"""Daily plan across accounts: request grouping, pacing and batching."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from .dates import parse_start_date
from .errors import DailyRequestsError, InvalidDateFormat
from .models import Account, Game, RenderedRequest
from .scheduler import DailyRequestScheduler
from .storage import SQLiteStore

START_TIME_FORMATS = ("%H:%M:%S", "%H:%M")


@dataclass
class RequestGroup:
    """Session/event requests sharing an event token and duration."""
    event_token: str
    time_spent: int
    requests: list[RenderedRequest] = field(default_factory=list)


@dataclass
class AccountPlan:
    """Grouped requests for one account on the target date."""
    account: Account
    target_date: str
    days_passed: int
    groups: list[RequestGroup] = field(default_factory=list)
    scheduled_offsets: list[int] = field(default_factory=list)  # seconds after the first group
    first_request_allowed_at: Optional[datetime] = None

    @property
    def request_count(self) -> int:
        return sum(len(g.requests) for g in self.groups)


@dataclass
class BatchEntry:
    """One account's request group placed in a batch."""
    plan: AccountPlan
    group: RequestGroup
    group_index: int

    @property
    def scheduled_offset(self) -> int:
        return self.plan.scheduled_offsets[self.group_index]


@dataclass
class Batch:
    """Request groups that can be sent together, at most one per game."""
    index: int
    entries: list[BatchEntry] = field(default_factory=list)


@dataclass
class PlanFailure:
    """An account whose requests could not be computed."""
    account: Account
    error: DailyRequestsError


@dataclass
class DailyPlan:
    """Result of planning every account for one date."""
    target_date: str
    plans: list[AccountPlan] = field(default_factory=list)
    batches: list[Batch] = field(default_factory=list)
    failures: list[PlanFailure] = field(default_factory=list)

    @property
    def total_requests(self) -> int:
        return sum(p.request_count for p in self.plans)


def group_requests(requests: list[RenderedRequest]) -> list[RequestGroup]:
    """Group requests by (event_token, time_spent), ordered by time_spent."""
    groups: list[RequestGroup] = []
    index: dict[tuple[str, int], RequestGroup] = {}

    for request in requests:
        key = (request.event_token, request.time_spent)
        group = index.get(key)
        if group is None:
            group = RequestGroup(event_token=request.event_token, time_spent=request.time_spent)
            index[key] = group
            groups.append(group)
        group.requests.append(request)

    groups.sort(key=lambda g: g.time_spent)
    return groups


def scheduled_offsets(groups: list[RequestGroup]) -> list[int]:
    """Seconds each group waits after the first one.

    Consecutive groups are spaced by the difference of their durations.
    """
    offsets = []
    current = 0
    for i, group in enumerate(groups):
        if i > 0:
            current += group.time_spent - groups[i - 1].time_spent
        offsets.append(current)
    return offsets


def parse_start_time(value: str) -> Optional[datetime]:
    for fmt in START_TIME_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def first_request_allowed_at(
    account: Account,
    time_spent: int,
    today: Optional[date] = None,
) -> Optional[datetime]:
    """Earliest time the first request may go out: start + time_spent seconds.

    Returns None when the account's start date or time cannot be parsed.
    """
    try:
        start_date = parse_start_date(account.start_date, today=today)
    except InvalidDateFormat:
        return None

    start_time = parse_start_time(account.start_time or "00:00")
    if start_time is None:
        return None

    base = datetime.combine(start_date, start_time.time())
    return base + timedelta(seconds=time_spent)


def remaining_seconds(ready_at: Optional[datetime], now: datetime) -> int:
    """Whole seconds until `ready_at`, rounded up; 0 when already ready."""
    if ready_at is None or now >= ready_at:
        return 0
    delta = (ready_at - now).total_seconds()
    return int(delta) + (1 if delta % 1 else 0)


def format_remaining_time(seconds: int) -> str:
    """Format seconds as e.g. `1h 2m 3s`."""
    if seconds <= 0:
        return "0s"

    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def build_batches(plans_by_game: dict[int, list[AccountPlan]]) -> list[Batch]:
    """Interleave request groups into batches.

    Each round takes, for every game in turn, the next pending group of the
    first account in that game that still has one. Rounds continue until all
    groups are placed, so an account's groups land in successive batches.
    """
    batches: list[Batch] = []
    next_group: dict[int, int] = {}

    while True:
        batch = Batch(index=len(batches))

        for plans in plans_by_game.values():
            for plan in plans:
                group_index = next_group.get(plan.account.id, 0)
                if group_index < len(plan.groups):
                    batch.entries.append(
                        BatchEntry(plan=plan, group=plan.groups[group_index], group_index=group_index)
                    )
                    next_group[plan.account.id] = group_index + 1
                    break

        if not batch.entries:
            break
        batches.append(batch)

    return batches


class DailyPlanner:
    """Plans the requests of every account of every game for one date."""

    def __init__(
        self,
        store: SQLiteStore,
        scheduler: DailyRequestScheduler,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.progress_callback = progress_callback

    def plan_account(self, account: Account, target_date: str) -> AccountPlan:
        """Compute and group one account's requests."""
        response = self.scheduler.compute_daily_requests(account.id, target_date)
        groups = group_requests(response.requests)

        plan = AccountPlan(
            account=account,
            target_date=response.target_date,
            days_passed=response.days_passed,
            groups=groups,
            scheduled_offsets=scheduled_offsets(groups),
        )
        if groups:
            plan.first_request_allowed_at = first_request_allowed_at(
                account, groups[0].time_spent, today=self.scheduler.today()
            )
        return plan

    def plan(self, target_date: str, games: Optional[list[Game]] = None) -> DailyPlan:
        """Plan all accounts; failures are recorded and do not stop the run."""
        result = DailyPlan(target_date=target_date)
        if games is None:
            games = self.store.get_games()

        accounts_by_game = {game.id: self.store.get_accounts_by_game(game.id) for game in games}
        total = sum(len(accounts) for accounts in accounts_by_game.values())
        done = 0

        plans_by_game: dict[int, list[AccountPlan]] = {}
        for game_id, accounts in accounts_by_game.items():
            for account in accounts:
                try:
                    plan = self.plan_account(account, target_date)
                except DailyRequestsError as e:
                    result.failures.append(PlanFailure(account=account, error=e))
                else:
                    if plan.groups:
                        result.plans.append(plan)
                        plans_by_game.setdefault(game_id, []).append(plan)

                done += 1
                if self.progress_callback:
                    self.progress_callback(done, total)

        result.batches = build_batches(plans_by_game)
        return result
