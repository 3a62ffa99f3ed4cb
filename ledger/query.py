from typing import Iterable

from .models import (
    AmountOperator,
    NULL_RELATED_ID,
    SearchResult,
    Transaction,
    TransactionFilter,
)
from .storage import InMemoryStorage


def matches(transaction: Transaction, criteria: TransactionFilter) -> bool:
    if criteria.user_id is not None and transaction.user_id != criteria.user_id:
        return False
    if criteria.type is not None and transaction.type != criteria.type:
        return False
    if criteria.amount is not None:
        if criteria.operator == AmountOperator.GTE and transaction.amount < criteria.amount:
            return False
        if criteria.operator == AmountOperator.LTE and transaction.amount > criteria.amount:
            return False
    if criteria.related_id == NULL_RELATED_ID:
        if transaction.related_id is not None:
            return False
    elif criteria.related_id is not None and transaction.related_id != criteria.related_id:
        return False
    if criteria.suspicious is not None and transaction.suspicious != criteria.suspicious:
        return False
    # Only redemptions carry a processed flag.
    if criteria.processed is not None and transaction.processed != criteria.processed:
        return False
    if criteria.created_by is not None and transaction.created_by != criteria.created_by:
        return False
    if criteria.created_after is not None and transaction.created_at < criteria.created_after:
        return False
    if criteria.created_before is not None and transaction.created_at > criteria.created_before:
        return False
    return True


def paginate(transactions: Iterable[Transaction], page: int, limit: int) -> SearchResult:
    ordered = sorted(transactions, key=lambda t: t.id, reverse=True)
    offset = (page - 1) * limit
    return SearchResult(
        items=ordered[offset:offset + limit],
        total_count=len(ordered),
        page=page,
        limit=limit,
    )


class QueryEngine:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def search(self, criteria: TransactionFilter, page: int, limit: int) -> SearchResult:
        if criteria.user_id is not None:
            candidates = self.storage.list_by_user(criteria.user_id)
        else:
            candidates = self.storage.list_all()
        return paginate((t for t in candidates if matches(t, criteria)), page, limit)
