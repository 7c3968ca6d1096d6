"""API routes for the invoice approval engine.

Thin JSON handlers: parse the request, call ApprovalEngine with the session
user's firm, serialize the result. Engine errors carry their own status code
(see handle_api_errors).
"""

import logging
from datetime import datetime, time, timezone
from decimal import Decimal, InvalidOperation

from flask import jsonify
from flask_login import current_user

from . import approvals_bp
from .engine import ApprovalEngine, ApprovalAction
from .repositories import SetupRepository
from apflow.core.utils.api_helpers import (
    admin_required, api_login_required, get_json_or_error, handle_api_errors,
)

logger = logging.getLogger('apflow.core.approvals.routes')

MAX_APPROVAL_LIMIT = Decimal('1e16')

_engine = ApprovalEngine()
_setup_repo = SetupRepository()


# ════════════════════════════════════════════
# Invoice approval workflow
# ════════════════════════════════════════════

@approvals_bp.route('/api/invoices/<uuid:invoice_id>/submit', methods=['POST'])
@api_login_required
@handle_api_errors
def api_submit_for_approval(invoice_id):
    """Send an invoice into approval (idempotent while a plan is active)."""
    result = _engine.submit_for_approval(current_user.firm_id, str(invoice_id), current_user.id)
    return jsonify({
        'success': True,
        'plan': _serialize_plan(result['plan']),
        'policy': result['policy'],
        'invoice_status': result['invoice_status'],
    }), 201


@approvals_bp.route('/api/invoices/<uuid:invoice_id>/act', methods=['POST'])
@api_login_required
@handle_api_errors
def api_act_on_approval(invoice_id):
    """Approve or reject the pending step the current user may act on."""
    data, error = get_json_or_error()
    if error:
        return error

    try:
        action = ApprovalAction.coerce(data.get('action'))
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    comment = data.get('comment')
    if comment is not None and not isinstance(comment, str):
        return jsonify({'success': False, 'error': 'comment must be a string'}), 400
    comment = (comment or '').strip() or None
    scope_id = data.get('scope_id') or data.get('scopeId')

    outcome = _engine.act_on_approval(
        current_user.firm_id, str(invoice_id), current_user.id, action,
        comment=comment, scope_id=scope_id,
    )
    return jsonify({'success': True, **outcome})


@approvals_bp.route('/api/invoices/<uuid:invoice_id>/history', methods=['GET'])
@api_login_required
@handle_api_errors
def api_approval_history(invoice_id):
    """Audit trail plus the active plan (if any) for display."""
    history = _engine.get_history(current_user.firm_id, str(invoice_id))
    plan = _engine.get_active_plan(current_user.firm_id, str(invoice_id))
    return jsonify({
        'history': [_serialize_history(h) for h in history],
        'plan': _serialize_plan(plan) if plan else None,
    })


@approvals_bp.route('/api/inbox', methods=['GET'])
@api_login_required
@handle_api_errors
def api_inbox():
    """Pending approvals for the current user, including substitute duty."""
    items = _engine.get_inbox(current_user.firm_id, current_user.id)
    return jsonify({'items': [_serialize_inbox_item(i) for i in items]})


# ════════════════════════════════════════════
# Approval setup directory (owner/admin)
# ════════════════════════════════════════════

@approvals_bp.route('/api/setups', methods=['GET'])
@admin_required
@handle_api_errors
def api_list_setups():
    users = _setup_repo.list_for_firm(current_user.firm_id)
    for u in users:
        u['setup'] = _serialize_setup(u['setup']) if u['setup'] else None
    return jsonify({'users': users})


@approvals_bp.route('/api/setups/<user_id>', methods=['PUT'])
@admin_required
@handle_api_errors
def api_save_setup(user_id):
    data, error = get_json_or_error()
    if error:
        return error

    firm_id = current_user.firm_id
    if not _setup_repo.is_firm_member(firm_id, user_id):
        return jsonify({'success': False, 'error': 'User is not in this firm'}), 400

    approver_user_id = data.get('approver_user_id') or None
    substitute_user_id = data.get('substitute_user_id') or None

    if approver_user_id and not _setup_repo.is_firm_member(firm_id, approver_user_id):
        return jsonify({'success': False, 'error': 'Approver must be a firm member'}), 400
    if substitute_user_id and not _setup_repo.is_firm_member(firm_id, substitute_user_id):
        return jsonify({'success': False, 'error': 'Substitute must be a firm member'}), 400

    active = data.get('active')
    if active is not None and not isinstance(active, bool):
        return jsonify({'success': False, 'error': 'active must be true or false'}), 400

    setup = _setup_repo.upsert(
        firm_id, user_id,
        approver_user_id=approver_user_id,
        approval_limit=_parse_optional_decimal(data.get('approval_limit')),
        substitute_user_id=substitute_user_id,
        substitute_from=_parse_optional_date(data.get('substitute_from')),
        substitute_to=_parse_optional_date(data.get('substitute_to'), end_of_day=True),
        active=True if active is None else active,
    )
    return jsonify({'success': True, 'setup': _serialize_setup(setup)})


# ════════════════════════════════════════════
# Parsing
# ════════════════════════════════════════════

def _parse_optional_date(raw, end_of_day=False):
    """'YYYY-MM-DD' or ISO-8601 to an aware datetime; blank to None.

    A bare date means the start of that day (UTC), or its last instant when
    end_of_day is set so an inclusive 'to' date covers the whole day.
    """
    value = ('' if raw is None else str(raw)).strip()
    if not value:
        return None
    try:
        if len(value) == 10:
            day = datetime.strptime(value, '%Y-%m-%d').date()
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValueError(f'Invalid date: {value}')
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_optional_decimal(raw):
    if raw is None or raw == '':
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValueError(f'Invalid approval limit: {raw}')
    if not value.is_finite():
        raise ValueError(f'Invalid approval limit: {raw}')
    # approval_limit is NUMERIC(18, 2)
    if value >= MAX_APPROVAL_LIMIT:
        raise ValueError('Approval limit is too large')
    if value < 0:
        raise ValueError('Approval limit cannot be negative')
    return value


# ════════════════════════════════════════════
# Serialization
# ════════════════════════════════════════════

def _iso(value):
    return value.isoformat() if value is not None and hasattr(value, 'isoformat') else value


def _money(value):
    return str(value) if value is not None else None


def _serialize_step(step):
    return {
        'id': step['id'],
        'step_index': step['step_index'],
        'approver_user_id': step['approver_user_id'],
        'status': step['status'],
        'acted_by_user_id': step.get('acted_by_user_id'),
        'acted_at': _iso(step.get('acted_at')),
        'comment': step.get('comment'),
    }


def _serialize_scope(scope):
    return {
        'id': scope['id'],
        'scope_type': scope.get('scope_type'),
        'scope_key': scope.get('scope_key'),
        'status': scope['status'],
        'amount': _money(scope.get('amount')),
        'currency_code': scope.get('currency_code'),
        'steps': [_serialize_step(s) for s in scope.get('steps', [])],
    }


def _serialize_plan(plan):
    return {
        'id': plan['id'],
        'invoice_id': plan['invoice_id'],
        'status': plan['status'],
        'requester_user_id': plan.get('requester_user_id'),
        'created_at': _iso(plan.get('created_at')),
        'completed_at': _iso(plan.get('completed_at')),
        'rejected_at': _iso(plan.get('rejected_at')),
        'scopes': [_serialize_scope(s) for s in plan.get('scopes', [])],
    }


def _serialize_history(row):
    return {
        'id': row['id'],
        'user_id': row['user_id'],
        'user_name': row.get('user_name'),
        'status': row['status'],
        'comment': row.get('comment'),
        'acted_at': _iso(row.get('acted_at')),
        'created_at': _iso(row.get('created_at')),
    }


def _serialize_setup(setup):
    return {
        'user_id': setup['user_id'],
        'approver_user_id': setup.get('approver_user_id'),
        'approval_limit': _money(setup.get('approval_limit')),
        'substitute_user_id': setup.get('substitute_user_id'),
        'substitute_from': _iso(setup.get('substitute_from')),
        'substitute_to': _iso(setup.get('substitute_to')),
        'active': setup.get('active'),
    }


def _serialize_inbox_item(item):
    return {
        'step_id': item['step_id'],
        'scope_id': item['scope_id'],
        'step_index': item['step_index'],
        'invoice': {
            'id': item['invoice_id'],
            'invoice_no': item.get('invoice_no'),
            'status': item.get('invoice_status'),
            'total_amount': _money(item.get('total_amount')),
            'currency_code': item.get('invoice_currency_code'),
            'invoice_date': _iso(item.get('invoice_date')),
            'due_date': _iso(item.get('due_date')),
            'vendor_name': item.get('vendor_name'),
        },
        'scope': {
            'id': item['scope_id'],
            'scope_type': item.get('scope_type'),
            'scope_key': item.get('scope_key'),
            'amount': _money(item.get('amount')),
            'currency_code': item.get('scope_currency_code'),
            'requested_at': _iso(item.get('requested_at')),
            'requester': {
                'id': item.get('requester_user_id'),
                'name': item.get('requester_name'),
                'email': item.get('requester_email'),
            },
        },
        'approver': {
            'id': item['approver_user_id'],
            'name': item.get('approver_name'),
            'email': item.get('approver_email'),
        },
        'acting_as_substitute': item['acting_as_substitute'],
    }
