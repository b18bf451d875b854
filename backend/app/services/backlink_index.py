from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from backend.app.repositories.entry_repository import Entry, EntryRepository
from backend.app.services.key_locks import KeyedLocks
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("inkwell.backlinks")


@dataclass(frozen=True)
class ReconcileReport:
    targets_touched: int
    backlinks_added: int
    backlinks_removed: int
    unresolved_targets: tuple[str, ...]


def record_lock_key(blog_id: str, entry_id: str) -> tuple[str, str, str]:
    return ("record", blog_id, entry_id)


class BacklinkIndexMaintainer:
    """Applies the outbound-link diff of one entry to its targets' backlink lists.

    Every target update is a locked read-modify-write of a single record, and
    adding a present URL or removing an absent one changes nothing, so a failed
    reconciliation can simply be run again.
    """

    def __init__(
        self,
        *,
        repository: EntryRepository,
        locks: KeyedLocks,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._repository = repository
        self._locks = locks
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def reconcile(
        self,
        *,
        blog_id: str,
        entry_id: str,
        previous_urls: Iterable[str],
        new_url: str | None,
        old_outbound: Iterable[str],
        new_outbound: Iterable[str],
        reapply: bool = False,
    ) -> ReconcileReport:
        """Move targets from the contributions in ``previous_urls``/``old_outbound`` to the new state.

        ``previous_urls`` holds every address the entry may have written into
        targets so far, including ones left behind by an interrupted write. With
        ``reapply`` every kept target is written again.
        """
        retracted_urls = tuple(dict.fromkeys(previous_urls))
        stale_urls = tuple(url for url in retracted_urls if url != new_url)
        old_targets = set(old_outbound)
        new_targets = set(new_outbound)
        removed = old_targets - new_targets
        added = new_targets - old_targets
        if stale_urls or reapply:
            added |= new_targets & old_targets

        touched = 0
        added_count = 0
        removed_count = 0
        unresolved: list[str] = []

        for target_url in sorted(removed):
            outcome = self._mutate_target(
                blog_id,
                target_url,
                source_entry_id=entry_id,
                mutate=lambda target: self._retract(
                    target, blog_id=blog_id, entry_id=entry_id, urls=retracted_urls
                ),
            )
            if outcome is None:
                unresolved.append(target_url)
                continue
            touched += 1
            removed_count += int(outcome)

        for target_url in sorted(added):
            assert new_url is not None
            outcome = self._mutate_target(
                blog_id,
                target_url,
                source_entry_id=entry_id,
                mutate=lambda target: self._retract(
                    target, blog_id=blog_id, entry_id=entry_id, urls=stale_urls
                ).with_backlink(new_url),
            )
            if outcome is None:
                unresolved.append(target_url)
                continue
            touched += 1
            added_count += int(outcome)

        report = ReconcileReport(
            targets_touched=touched,
            backlinks_added=added_count,
            backlinks_removed=removed_count,
            unresolved_targets=tuple(unresolved),
        )
        LOGGER.debug(
            "backlinks reconciled blog_id=%s entry_id=%s previous_urls=%s new_url=%s "
            "touched=%s added=%s removed=%s unresolved=%s",
            blog_id,
            entry_id,
            retracted_urls,
            new_url,
            report.targets_touched,
            report.backlinks_added,
            report.backlinks_removed,
            len(report.unresolved_targets),
        )
        self._telemetry.emit(
            "backlinks.reconcile",
            blog_id=blog_id,
            entry_id=entry_id,
            renamed=new_url is not None and bool(stale_urls),
            targets_touched=report.targets_touched,
            backlinks_added=report.backlinks_added,
            backlinks_removed=report.backlinks_removed,
            unresolved_targets=report.unresolved_targets,
        )
        return report

    def retract_all(
        self,
        *,
        blog_id: str,
        entry_id: str,
        urls: Iterable[str],
        outbound: Iterable[str],
    ) -> ReconcileReport:
        return self.reconcile(
            blog_id=blog_id,
            entry_id=entry_id,
            previous_urls=urls,
            new_url=None,
            old_outbound=outbound,
            new_outbound=(),
        )

    def rebuild_backlinks(self, *, blog_id: str, entry_id: str) -> Entry:
        """Add the address of every active entry that currently links here.

        Linkers found by the unlocked scan are re-read under this entry's record
        lock, the same lock their own retractions take, so an edit racing with
        the scan cannot leave a stale backlink behind.
        """
        current = self._repository.get_entry(blog_id, entry_id)
        if current is None:
            raise LookupError(f"entry vanished during write: {entry_id}")
        candidates = [
            candidate.entry_id
            for candidate in self._repository.list_entries(blog_id)
            if candidate.entry_id != entry_id
            and current.canonical_url in candidate.outbound_links
        ]

        with self._locks.hold(record_lock_key(blog_id, entry_id)):
            latest = self._repository.get_entry(blog_id, entry_id)
            if latest is None:
                raise LookupError(f"entry vanished during write: {entry_id}")
            if latest.deleted:
                return latest
            updated = latest
            for candidate_id in candidates:
                linker = self._repository.get_entry(blog_id, candidate_id)
                if linker is None or linker.deleted:
                    continue
                if linker.canonical_url == latest.canonical_url:
                    continue
                if latest.canonical_url not in linker.outbound_links:
                    continue
                updated = updated.with_backlink(linker.canonical_url)
            if updated != latest:
                self._repository.put_entry(updated)
        return updated

    def _retract(
        self,
        target: Entry,
        *,
        blog_id: str,
        entry_id: str,
        urls: Iterable[str],
    ) -> Entry:
        for url in urls:
            if url not in target.backlinks:
                continue
            if self._linked_from_elsewhere(
                blog_id, url, source_entry_id=entry_id, target_url=target.canonical_url
            ):
                continue
            target = target.without_backlink(url)
        return target

    def _linked_from_elsewhere(
        self,
        blog_id: str,
        url: str,
        *,
        source_entry_id: str,
        target_url: str,
    ) -> bool:
        # Another active entry now owns the address and still links the target.
        owner_id = self._repository.get_url_owner(blog_id, url)
        if owner_id is None or owner_id == source_entry_id:
            return False
        owner = self._repository.get_entry(blog_id, owner_id)
        return (
            owner is not None
            and owner.is_active
            and owner.canonical_url == url
            and target_url in owner.outbound_links
        )

    def _mutate_target(
        self,
        blog_id: str,
        target_url: str,
        *,
        source_entry_id: str,
        mutate: Callable[[Entry], Entry],
    ) -> bool | None:
        target_id = self._repository.get_url_owner(blog_id, target_url)
        if target_id is None or target_id == source_entry_id:
            return None

        with self._locks.hold(record_lock_key(blog_id, target_id)):
            target = self._repository.get_entry(blog_id, target_id)
            if target is None or target.deleted or target.canonical_url != target_url:
                return None
            updated = mutate(target)
            if updated == target:
                return False
            self._repository.put_entry(updated)
            return True
