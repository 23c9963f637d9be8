"""
Machine Collection Sessions

WHY: Cash is pulled from many machines during one vault shift. Counting
happens machine by machine, but the vault must see the whole batch as one
movement: a finalize that stopped after 12 of 30 machines would leave cash
that exists physically but not in the system.

DESIGN PRINCIPLES:
- One OPEN session per (location, vault shift); start is idempotent
- Entries are editable until finalize (remove then re-add to correct)
- Finalize merges every entry and calls the vault once, in one transaction
- A finalized session is frozen; a repeated finalize fails with AlreadyFinalized
- Lock order is session -> vault
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyFinalized,
    DuplicateMachine,
    EmptySession,
    EntryNotFound,
    InvalidCount,
    SessionNotFound,
)
from ..extensions import db
from ..models import CollectionEntry, CollectionSession
from ..models.collections import SESSION_STATUS_FINALIZED, SESSION_STATUS_OPEN
from ..models.vault import KIND_COLLECTION_FINALIZE
from ..time_utils import utcnow
from . import denominations as denoms
from . import vault_service
from .concurrency import exclusive, lock_for_update, run_with_retry


def _load_session_for_update(session_id: int) -> CollectionSession:
    session = lock_for_update(
        db.session.query(CollectionSession).filter_by(id=session_id)
    ).populate_existing().first()
    if not session:
        raise SessionNotFound(f"Collection session {session_id} not found")
    return session


def _require_open(session: CollectionSession) -> None:
    if session.status == SESSION_STATUS_FINALIZED:
        raise AlreadyFinalized(
            f"Collection session {session.id} was finalized",
            details={
                "session_id": session.id,
                "total_collected": session.total_collected,
                "entry_count": session.entry_count,
            },
        )


def _find_open(location_id: str, vault_shift_id: str) -> CollectionSession | None:
    return db.session.query(CollectionSession).filter_by(
        location_id=location_id,
        vault_shift_id=vault_shift_id,
        status=SESSION_STATUS_OPEN,
    ).first()


def get_session(session_id: int) -> CollectionSession:
    session = db.session.get(CollectionSession, session_id)
    if not session:
        raise SessionNotFound(f"Collection session {session_id} not found")
    return session


def start_or_get_session(
    location_id: str,
    vault_shift_id: str,
    actor: str | None = None,
) -> CollectionSession:
    """
    Return the OPEN session for (location, vault shift), creating it if needed.

    Two callers racing on the same key both end up with the same session:
    in-process they serialise on the key lock, across processes the partial
    unique index rejects the second insert and we re-read.
    """
    if not location_id or not vault_shift_id:
        raise ValueError("location_id and vault_shift_id are required")

    vault_service.get_vault_for_location(location_id)

    def _op():
        with exclusive("collection-key", (location_id, vault_shift_id)):
            existing = _find_open(location_id, vault_shift_id)
            if existing:
                return existing, False

            session = CollectionSession(
                location_id=location_id,
                vault_shift_id=vault_shift_id,
                status=SESSION_STATUS_OPEN,
                started_by=actor,
            )
            db.session.add(session)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                existing = _find_open(location_id, vault_shift_id)
                if existing is None:
                    raise
                return existing, False
            return session, True

    session, created = run_with_retry(_op)
    if created:
        current_app.logger.info(
            "collection session %s started for %s/%s", session.id, location_id, vault_shift_id
        )
    return session


def add_entry(
    session_id: int,
    machine_id: str,
    machine_name: str | None,
    denominations: Mapping[int, int],
    total_amount: int | None = None,
    collected_at: datetime | None = None,
    notes: str | None = None,
) -> CollectionSession:
    """
    Add one machine's counted cash to an open session.

    Raises:
        DuplicateMachine: machine already counted in this session
        InvalidCount: total_amount disagrees with the breakdown
    """
    if not machine_id:
        raise ValueError("machine_id is required")
    clean = denoms.normalize(denominations)
    amount = denoms.total(clean)
    if total_amount is not None and total_amount != amount:
        raise InvalidCount(
            f"Denomination total ({amount}) does not match amount ({total_amount})",
            details={"denomination_total": amount, "total_amount": total_amount},
        )

    def _op():
        with exclusive("session", session_id):
            session = _load_session_for_update(session_id)
            _require_open(session)

            if any(entry.machine_id == machine_id for entry in session.entries):
                raise DuplicateMachine(
                    f"Machine {machine_id} already has an entry in session {session_id}",
                    details={"session_id": session_id, "machine_id": machine_id},
                )

            entry = CollectionEntry(
                machine_id=machine_id,
                machine_name=machine_name or machine_id,
                notes=notes,
                collected_at=collected_at or utcnow(),
            )
            entry.denominations = clean
            session.entries.append(entry)
            db.session.commit()
            return session

    return run_with_retry(_op)


def remove_entry(session_id: int, machine_id: str) -> CollectionSession:
    """Drop a machine's entry from an open session (e.g. to re-count it)."""
    def _op():
        with exclusive("session", session_id):
            session = _load_session_for_update(session_id)
            _require_open(session)

            entry = next((e for e in session.entries if e.machine_id == machine_id), None)
            if entry is None:
                raise EntryNotFound(
                    f"Machine {machine_id} has no entry in session {session_id}",
                    details={"session_id": session_id, "machine_id": machine_id},
                )
            session.entries.remove(entry)
            db.session.commit()
            return session

    return run_with_retry(_op)


def finalize_session(session_id: int, actor: str) -> dict:
    """
    Commit every entry of the session to the vault as one adjustment.

    Returns:
        {"session_id", "total_collected", "entry_count", "record"}

    Raises:
        EmptySession: no entries to commit
        AlreadyFinalized: the session was committed before (duplicate retry)
    """
    def _op():
        with exclusive("session", session_id):
            session = _load_session_for_update(session_id)
            _require_open(session)
            if not session.entries:
                raise EmptySession(
                    f"Collection session {session_id} has no entries",
                    details={"session_id": session_id},
                )

            batch: dict[int, int] = {}
            for entry in session.entries:
                batch = denoms.merge(batch, entry.denominations)
            total_collected = denoms.total(batch)
            entry_count = len(session.entries)
            vault_id = vault_service.get_vault_for_location(session.location_id).id

            with vault_service.vault_scope(vault_id) as vault:
                record = vault_service.apply_adjustment(
                    vault,
                    batch,
                    KIND_COLLECTION_FINALIZE,
                    actor,
                    collection_session_id=session.id,
                    payload={
                        "vault_shift_id": session.vault_shift_id,
                        "entry_count": entry_count,
                        "total_collected": total_collected,
                        "machine_ids": [entry.machine_id for entry in session.entries],
                    },
                )

                session.status = SESSION_STATUS_FINALIZED
                session.total_collected = total_collected
                session.entry_count = entry_count
                session.finalized_by = actor
                session.finalized_at = utcnow()
                db.session.commit()

            return {
                "session_id": session_id,
                "total_collected": total_collected,
                "entry_count": entry_count,
                "record": record,
            }

    result = run_with_retry(_op)
    vault_service.log_committed(result["record"])
    return result
