"""Approver chain resolution.

Walks the approval setup directory from the requester, approver by approver,
until someone's approval limit covers the invoice amount. The approver graph
is user-maintained and may contain cycles, so the walk is iterative, bounded
and tracks visited users.
"""

import logging
from decimal import Decimal, InvalidOperation

from .errors import ApprovalConfigurationError

logger = logging.getLogger('apflow.core.approvals.chain')

MAX_CHAIN_DEPTH = 50


def normalize_amount(amount):
    """Coerce an invoice total to Decimal. Missing/blank totals count as 0."""
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, (int, float)):
        return Decimal(str(amount))
    if isinstance(amount, str) and amount.strip():
        try:
            return Decimal(amount.strip())
        except InvalidOperation:
            raise ValueError(f'Invalid invoice amount: {amount!r}')
    return Decimal('0')


def limit_covers_amount(limit, amount):
    """NULL limit means unlimited."""
    if limit is None:
        return True
    return normalize_amount(limit) >= amount


def resolve_chain(lookup, firm_id, requester_user_id, amount, max_depth=MAX_CHAIN_DEPTH):
    """Return the ordered approver user ids that must sign off on `amount`.

    Args:
        lookup: callable(firm_id, user_id) -> setup dict or None
        firm_id: firm whose setup directory is walked
        requester_user_id: user submitting the invoice
        amount: invoice total (Decimal or coercible)
        max_depth: hop bound before the chain is declared too deep

    Raises:
        ApprovalConfigurationError: the directory cannot produce a chain.
    """
    amount = normalize_amount(amount)
    visited = set()
    chain = []
    current_user_id = requester_user_id

    for depth in range(max_depth):
        if current_user_id in visited:
            logger.warning(f'Approval chain loop at user {current_user_id} (firm {firm_id})')
            raise ApprovalConfigurationError('Approval chain contains a loop')
        visited.add(current_user_id)

        current_setup = lookup(firm_id, current_user_id)
        approver_id = current_setup.get('approver_user_id') if current_setup else None
        if not approver_id:
            if depth == 0:
                raise ApprovalConfigurationError('No approver configured for requester')
            raise ApprovalConfigurationError('Approval chain is missing an approver')

        chain.append(approver_id)

        approver_setup = lookup(firm_id, approver_id)
        if not approver_setup:
            raise ApprovalConfigurationError('Approver is missing approval setup')
        if not approver_setup.get('active'):
            raise ApprovalConfigurationError('Approver is not active for approvals')

        if limit_covers_amount(approver_setup.get('approval_limit'), amount):
            logger.debug(f'Resolved chain of {len(chain)} for {requester_user_id}: {chain}')
            return chain

        current_user_id = approver_id

    raise ApprovalConfigurationError('Approval chain is too deep')
