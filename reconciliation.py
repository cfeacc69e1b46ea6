from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Mapping, Optional

from errors import PersistenceError, ProviderError
from models import CurrencyCode, RecurringFrequency, TransactionStatus
from provider import RecurringStreams, TransactionProvider
from recurrence import DetectedRecurring
from retry import RetryPolicy
from schemas import ProviderStream, ProviderTransaction, RecurringRecord, TransactionRecord

logger = logging.getLogger(__name__)

ID_BATCH_SIZE = 10
MAX_ID_BATCHES = 100

# Given candidate ids, return the ones already present in the store.
TakenLookup = Callable[[list[str]], set[str]]


@dataclass(frozen=True)
class AccountLink:
    fin_account_id: int
    budget_id: Optional[int]


@dataclass
class ItemSync:
    added: list[ProviderTransaction]
    next_cursor: Optional[str]


@dataclass
class MergeResult:
    new: list[TransactionRecord] = field(default_factory=list)
    # stored pending provider id -> posted replacement
    replaced: dict[str, TransactionRecord] = field(default_factory=dict)
    linked: list[TransactionRecord] = field(default_factory=list)
    unlinked: list[TransactionRecord] = field(default_factory=list)
    duplicates: int = 0


@dataclass
class StreamMerge:
    updated: list[RecurringRecord] = field(default_factory=list)
    new: list[RecurringRecord] = field(default_factory=list)


@dataclass
class ManualRecurringMerge:
    updated: list[RecurringRecord] = field(default_factory=list)
    new: list[DetectedRecurring] = field(default_factory=list)
    superseded: list[int] = field(default_factory=list)


def _draw_batch(prefix: str, suffix: str, rng: random.Random) -> list[str]:
    return [
        f"{prefix}{rng.randrange(1_000_000):06d}{suffix}" for _ in range(ID_BATCH_SIZE)
    ]


def _first_free(
    prefix: str, suffix: str, taken: TakenLookup, rng: random.Random
) -> str:
    for _ in range(MAX_ID_BATCHES):
        candidates = _draw_batch(prefix, suffix, rng)
        used = taken(candidates)
        for candidate in candidates:
            if candidate not in used:
                return candidate
    raise PersistenceError(f"Could not generate a free id for prefix {prefix}")


def generate_user_tx_id(
    txn_date: date,
    provider_tx_id: Optional[str],
    taken: TakenLookup,
    rng: Optional[random.Random] = None,
) -> str:
    """``P`` + YYYYMMDD + 6 random digits + last 6 chars of the provider id."""
    suffix = (provider_tx_id or "")[-6:].rjust(6, "0")
    prefix = f"P{txn_date.strftime('%Y%m%d')}"
    return _first_free(prefix, suffix, taken, rng or random.Random())


def generate_recurring_id(
    first_date: date,
    merchant: Optional[str],
    taken: TakenLookup,
    rng: Optional[random.Random] = None,
) -> str:
    letters = re.sub(r"[^A-Za-z0-9]", "", merchant or "")[:3].upper()
    suffix = letters.ljust(3, "X")
    prefix = f"M{first_date.strftime('%Y%m%d')}"
    return _first_free(prefix, suffix, taken, rng or random.Random())


def sync_item(
    provider: TransactionProvider,
    access_token: str,
    cursor: Optional[str],
    retry: RetryPolicy,
) -> ItemSync:
    """Drain the provider's sync pages for one item.

    A whole pass over the pages is one attempt. A failed attempt starts over
    from ``cursor``, so the returned cursor always belongs to a complete pass.
    """

    def attempt() -> ItemSync:
        added: list[ProviderTransaction] = []
        current = cursor
        while True:
            page = provider.fetch_transactions(access_token, current)
            added.extend(page.added)
            current = page.next_cursor
            if not page.has_more:
                return ItemSync(added=added, next_cursor=current)

    try:
        return retry.call(attempt, label="transactions_sync")
    except ProviderError:
        raise
    except Exception as exc:
        raise ProviderError(f"Transaction sync failed: {exc}") from exc


def fetch_streams(
    provider: TransactionProvider,
    access_token: str,
    account_ids: list[str],
    retry: RetryPolicy,
) -> RecurringStreams:
    try:
        return retry.call(
            lambda: provider.fetch_recurring_streams(access_token, account_ids),
            label="recurring_streams",
        )
    except ProviderError:
        raise
    except Exception as exc:
        raise ProviderError(f"Recurring stream lookup failed: {exc}") from exc


def _currency(code: Optional[str]) -> CurrencyCode:
    try:
        return CurrencyCode(code) if code else CurrencyCode.usd
    except ValueError:
        return CurrencyCode.usd


def to_record(
    txn: ProviderTransaction, accounts: Mapping[str, AccountLink]
) -> TransactionRecord:
    link = accounts.get(txn.account_id)
    return TransactionRecord(
        provider_tx_id=txn.transaction_id,
        pending_provider_tx_id=txn.pending_transaction_id,
        provider_account_id=txn.account_id,
        fin_account_id=link.fin_account_id if link else None,
        date=txn.date,
        amount=txn.amount,
        status=TransactionStatus.pending if txn.pending else TransactionStatus.posted,
        currency=_currency(txn.iso_currency_code),
        merchant=txn.merchant_name or txn.name,
        provider_category=txn.detailed_category,
    )


def merge_transactions(
    existing: Iterable[TransactionRecord],
    added: Iterable[ProviderTransaction],
    accounts: Mapping[str, AccountLink],
    budget_id: int,
    linked_account_ids: Optional[set[int]] = None,
) -> MergeResult:
    """Fold freshly synced transactions into the stored set.

    Provider ids already stored (or repeated within ``added``) are dropped. A
    posted transaction pointing at a stored pending one replaces it. The
    merged set is partitioned by whether its account belongs to
    ``budget_id``.
    """
    result = MergeResult()
    stored = list(existing)
    by_provider_id = {t.provider_tx_id: t for t in stored if t.provider_tx_id}
    seen: set[str] = set(by_provider_id)

    for txn in added:
        if txn.transaction_id in seen:
            result.duplicates += 1
            continue
        seen.add(txn.transaction_id)
        record = to_record(txn, accounts)
        pending_id = txn.pending_transaction_id
        if pending_id and pending_id in by_provider_id and pending_id not in result.replaced:
            previous = by_provider_id[pending_id]
            result.replaced[pending_id] = record.model_copy(
                update={
                    "user_tx_id": previous.user_tx_id,
                    "category_id": previous.category_id,
                    "note": previous.note,
                }
            )
            continue
        result.new.append(record)

    linked_ids = linked_account_ids
    if linked_ids is None:
        linked_ids = {
            link.fin_account_id
            for link in accounts.values()
            if link.budget_id == budget_id
        }
    merged = [
        result.replaced.get(t.provider_tx_id or "", t) for t in stored
    ] + result.new
    for record in merged:
        if record.fin_account_id is not None and record.fin_account_id in linked_ids:
            result.linked.append(record)
        else:
            result.unlinked.append(record)
    if result.duplicates:
        logger.info(f"merge_transactions: duplicates_skipped={result.duplicates}")
    return result


def _stream_frequency(value: Optional[str]) -> RecurringFrequency:
    mapping = {
        "weekly": RecurringFrequency.weekly,
        "biweekly": RecurringFrequency.biweekly,
        "semi_monthly": RecurringFrequency.monthly,
        "monthly": RecurringFrequency.monthly,
        "annually": RecurringFrequency.yearly,
    }
    return mapping.get((value or "").lower(), RecurringFrequency.unknown)


def merge_streams(
    existing: Iterable[RecurringRecord],
    streams: Iterable[ProviderStream],
    accounts: Mapping[str, AccountLink],
    user_ids: Mapping[str, str],
) -> StreamMerge:
    """Match provider streams to stored recurring records by stream id.

    ``user_ids`` maps provider transaction ids to stored ``user_tx_id``s so
    instances refer to the store's identifiers where known.
    """
    merge = StreamMerge()
    by_stream = {r.provider_stream_id: r for r in existing if r.provider_stream_id}
    handled: set[str] = set()
    for stream in streams:
        if stream.stream_id in handled:
            continue
        handled.add(stream.stream_id)
        instance_ids = [user_ids.get(tid, tid) for tid in stream.transaction_ids]
        frequency = _stream_frequency(stream.frequency)
        known = by_stream.get(stream.stream_id)
        if known is not None:
            merge.updated.append(
                known.model_copy(
                    update={
                        "instance_ids": instance_ids,
                        "frequency": frequency,
                        "average_amount": stream.average_amount,
                    }
                )
            )
            continue
        link = accounts.get(stream.account_id)
        merge.new.append(
            RecurringRecord(
                provider_stream_id=stream.stream_id,
                fin_account_id=link.fin_account_id if link else None,
                merchant=stream.merchant_name or stream.description,
                provider_category=stream.detailed_category,
                frequency=frequency,
                average_amount=stream.average_amount,
                instance_ids=instance_ids,
            )
        )
    return merge


def merge_manual_recurring(
    existing: Iterable[RecurringRecord], detected: Iterable[DetectedRecurring]
) -> ManualRecurringMerge:
    """Fold detected patterns into stored manual recurring records.

    Stored records sharing any instance with a detected pattern are unioned
    into the oldest of them; the others are reported as superseded.
    """
    merge = ManualRecurringMerge()
    manual = sorted(
        (r for r in existing if not r.provider_stream_id and r.id is not None),
        key=lambda r: r.id,
    )
    originals: dict[int, RecurringRecord] = {r.id: r for r in manual}
    current = dict(originals)
    superseded: set[int] = set()

    for pattern in detected:
        pattern_ids = set(pattern.instance_ids)
        overlapping = [
            r
            for r in current.values()
            if r.id not in superseded and pattern_ids & set(r.instance_ids)
        ]
        if not overlapping:
            merge.new.append(pattern)
            continue
        overlapping.sort(key=lambda r: r.id)
        keeper = overlapping[0]
        instance_ids = list(keeper.instance_ids)
        for record in overlapping[1:]:
            superseded.add(record.id)
            instance_ids.extend(i for i in record.instance_ids if i not in instance_ids)
        instance_ids.extend(i for i in pattern.instance_ids if i not in instance_ids)
        current[keeper.id] = keeper.model_copy(
            update={
                "instance_ids": instance_ids,
                "frequency": pattern.frequency,
                "average_amount": pattern.average_amount,
                "category_id": keeper.category_id
                if keeper.category_id is not None
                else pattern.category_id,
            }
        )

    for record_id, record in current.items():
        if record_id in superseded:
            continue
        if record != originals[record_id]:
            merge.updated.append(record)
    merge.superseded = sorted(superseded)
    return merge
