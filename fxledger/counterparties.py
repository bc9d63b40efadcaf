from __future__ import annotations

from typing import Any, Mapping, Optional

import structlog

from fxledger import errors
from fxledger.ledger import LedgerService
from fxledger.models import Counterparty, Debt, ShowStatus, Transaction

logger = structlog.get_logger(__name__)

MIN_NAME_LENGTH = 2
COUNTERPARTY_FIELDS = {
    "display_name",
    "phone_number",
    "comment",
    "search_keywords",
    "show_status",
}


def validate_display_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise errors.InvalidFinanceData(field="display_name")
    if len(name) < MIN_NAME_LENGTH:
        raise errors.CounterpartyNameTooShort(field="display_name")
    return name


def matches_search(counterparty: Counterparty, search: Optional[str]) -> bool:
    """Case-insensitive substring match over the name, phone, comment and keywords."""
    needle = (search or "").strip().lower()
    if not needle:
        return True
    haystack = (
        counterparty.display_name,
        counterparty.phone_number,
        counterparty.comment,
        counterparty.search_keywords,
    )
    return any(needle in value.lower() for value in haystack if value)


def build_counterparty(
    user_id: str,
    *,
    display_name: Optional[str],
    phone_number: Optional[str] = None,
    comment: Optional[str] = None,
    search_keywords: Optional[str] = None,
) -> Counterparty:
    return Counterparty(
        user_id=user_id,
        display_name=validate_display_name(display_name),
        phone_number=_clean(phone_number),
        comment=_clean(comment),
        search_keywords=_clean(search_keywords),
    )


class CounterpartyService:
    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger
        self.repository = ledger.repository

    def list_counterparties(self, user_id: str, search: Optional[str] = None) -> list[Counterparty]:
        return [
            item
            for item in self.repository.list_counterparties(user_id)
            if matches_search(item, search)
        ]

    def get_counterparty(self, user_id: str, counterparty_id: str) -> Counterparty:
        counterparty = self.repository.get_counterparty(user_id, counterparty_id)
        if counterparty is None:
            raise errors.CounterpartyNotFound(id=counterparty_id)
        return counterparty

    def create_counterparty(
        self,
        user_id: str,
        *,
        display_name: Optional[str],
        phone_number: Optional[str] = None,
        comment: Optional[str] = None,
        search_keywords: Optional[str] = None,
    ) -> Counterparty:
        counterparty = build_counterparty(
            user_id,
            display_name=display_name,
            phone_number=phone_number,
            comment=comment,
            search_keywords=search_keywords,
        )
        counterparty = self.repository.insert_counterparty(counterparty)
        logger.info("counterparty_created", user_id=user_id, counterparty_id=counterparty.id)
        return counterparty

    def patch_counterparty(
        self, user_id: str, counterparty_id: str, fields: Mapping[str, Any]
    ) -> Counterparty:
        counterparty = self.get_counterparty(user_id, counterparty_id)
        unknown = set(fields) - COUNTERPARTY_FIELDS
        if unknown:
            raise errors.InvalidFinanceData(fields=",".join(sorted(unknown)))
        if "display_name" in fields:
            counterparty.display_name = validate_display_name(fields["display_name"])
        for key in ("phone_number", "comment", "search_keywords"):
            if key in fields:
                setattr(counterparty, key, _clean(fields[key]))
        if "show_status" in fields:
            status = (fields["show_status"] or "").strip().lower()
            if status not in {ShowStatus.ACTIVE, ShowStatus.ARCHIVED}:
                raise errors.InvalidFinanceData(field="show_status")
            counterparty.show_status = status
        counterparty = self.repository.save_counterparty(counterparty)
        self.ledger.invalidate(user_id)
        return counterparty

    def delete_counterparty(self, user_id: str, counterparty_id: str) -> None:
        counterparty = self.get_counterparty(user_id, counterparty_id)
        if self._linked_debts(user_id, counterparty.id):
            raise errors.CounterpartyHasDebts(id=counterparty_id)
        counterparty.deleted_at = self.ledger.now()
        counterparty.show_status = ShowStatus.DELETED
        self.repository.save_counterparty(counterparty)
        logger.info("counterparty_deleted", user_id=user_id, counterparty_id=counterparty_id)
        self.ledger.invalidate(user_id)

    def counterparty_transactions(self, user_id: str, counterparty_id: str) -> list[Transaction]:
        counterparty = self.get_counterparty(user_id, counterparty_id)
        return [
            txn
            for txn in self.repository.list_transactions(user_id)
            if txn.counterparty_id == counterparty.id
        ]

    def _linked_debts(self, user_id: str, counterparty_id: str) -> list[Debt]:
        return [
            debt
            for debt in self.repository.list_debts(user_id)
            if debt.counterparty_id == counterparty_id
        ]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None
