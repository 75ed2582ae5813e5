"""Completion filtering and due-set selection."""

from typing import Iterable

from .models import (
    AccountLevelProgress,
    AccountPurchaseEventProgress,
    DueItem,
    Level,
    MilestoneKind,
    PurchaseEvent,
)


def completed_level_ids(progress: Iterable[AccountLevelProgress]) -> set[int]:
    """Get IDs of the levels an account has completed."""
    return {p.level_id for p in progress if p.is_completed}


def select_due_levels(
    levels: Iterable[Level],
    completed: set[int],
    days_passed: int,
) -> list[Level]:
    """Select levels due on `days_passed`, keeping catalog order."""
    return [
        level
        for level in levels
        if level.days_offset == days_passed and level.id not in completed
    ]


def select_due_purchase_events(
    progress: Iterable[AccountPurchaseEventProgress],
    catalog: dict[int, PurchaseEvent],
    days_passed: int,
) -> list[tuple[AccountPurchaseEventProgress, PurchaseEvent]]:
    """Select purchase-event progress rows due on `days_passed`.

    Rows whose purchase event is missing from the catalog are skipped.
    """
    due = []
    for row in progress:
        if row.days_offset != days_passed or row.is_completed:
            continue
        event = catalog.get(row.purchase_event_id)
        if event is None:
            continue
        due.append((row, event))
    return due


def purchase_event_lookup(events: Iterable[PurchaseEvent]) -> dict[int, PurchaseEvent]:
    """Index purchase events by ID."""
    return {event.id: event for event in events}


def level_due_item(level: Level) -> DueItem:
    return DueItem(
        kind=MilestoneKind.LEVEL,
        event_token=level.event_token,
        base_time_spent=level.time_spent,
        days_offset=level.days_offset,
        level_id=level.id,
        level_name=level.level_name,
    )


def purchase_due_item(
    row: AccountPurchaseEventProgress,
    event: PurchaseEvent,
) -> DueItem:
    return DueItem(
        kind=MilestoneKind.PURCHASE_EVENT,
        event_token=event.event_token,
        base_time_spent=row.time_spent,
        days_offset=row.days_offset,
    )


def select_due_items(
    levels: Iterable[Level],
    level_progress: Iterable[AccountLevelProgress],
    purchase_events: Iterable[PurchaseEvent],
    purchase_progress: Iterable[AccountPurchaseEventProgress],
    days_passed: int,
) -> list[DueItem]:
    """Select every item due on `days_passed`, levels first."""
    completed = completed_level_ids(level_progress)
    catalog = purchase_event_lookup(purchase_events)

    items = [level_due_item(level) for level in select_due_levels(levels, completed, days_passed)]
    items.extend(
        purchase_due_item(row, event)
        for row, event in select_due_purchase_events(purchase_progress, catalog, days_passed)
    )
    return items
