"""ApprovalEngine: invoice approval workflow orchestrator.

All approval state changes flow through this class. Each public operation
runs in exactly one database transaction; hooks fire after it commits.

Step lifecycle, per scope:

    blocked --(previous step approved)--> pending --approve--> approved
                                          pending --reject---> rejected
    blocked/pending --(any step of the plan rejected)--> canceled

The only concurrency primitive is the status-guarded step update in
act_on_approval: `UPDATE ... WHERE id = %s AND status = 'pending'`. A
rowcount of 0 means a concurrent actor resolved the step first.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from functools import partial

from apflow.database import transaction, get_cursor
from apflow.core.utils.logging_config import LogContext, log_with_context
from . import hooks
from .actors import allowed_actors
from .chain import normalize_amount, resolve_chain
from .config import config as default_config
from .errors import (
    ApprovalEngineError, AmbiguousScopeError, InvalidInvoiceStateError,
    InvoiceNotFoundError, NoActivePlanError, NoPendingStepError,
    NotAuthorizedError, StepAlreadyActedError,
)
from .repositories import (
    SetupRepository, PlanRepository, StepRepository,
    AuditRepository, InvoiceRepository,
)

logger = logging.getLogger('apflow.core.approvals.engine')


class ApprovalAction(Enum):
    """What an actor does to the pending step."""
    APPROVE = 'approve'
    REJECT = 'reject'

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid approval action: {value!r} (expected 'approve' or 'reject')")

    @property
    def step_status(self):
        return 'approved' if self is ApprovalAction.APPROVE else 'rejected'


def _utcnow():
    return datetime.now(timezone.utc)


class ApprovalEngine:

    def __init__(self, clock=None, config=None):
        """
        Args:
            clock: zero-arg callable returning an aware datetime; used for
                acted_at/completed_at stamps and substitute windows.
            config: ApprovalConfig, defaults to the environment-loaded one.
        """
        self._clock = clock or _utcnow
        self._config = config or default_config
        self._setup_repo = SetupRepository()
        self._plan_repo = PlanRepository()
        self._step_repo = StepRepository()
        self._audit_repo = AuditRepository()
        self._invoice_repo = InvoiceRepository()

    # ════════════════════════════════════════════
    # Public API
    # ════════════════════════════════════════════

    def ensure_active_plan(self, firm_id, invoice_id, requester_user_id):
        """Return the invoice's active plan, creating it on first call.

        Idempotent: a second call (or a concurrent one that loses the
        one-active-plan race) returns the existing plan with no side effects.
        """
        with LogContext(firm_id=firm_id, invoice_id=invoice_id):
            with transaction() as conn:
                cursor = get_cursor(conn)
                plan, created = self._ensure_active_plan(
                    cursor, firm_id, invoice_id, requester_user_id)

            if created:
                self._fire_submitted(plan, requester_user_id)
            return plan

    def submit_for_approval(self, firm_id, invoice_id, requester_user_id):
        """Route an invoice into approval according to its approval policy.

        Policy 'none' completes immediately with an empty plan; any other
        policy goes through ensure_active_plan semantics.

        Returns:
            {'plan': ..., 'policy': ..., 'invoice_status': ...}
        """
        with LogContext(firm_id=firm_id, invoice_id=invoice_id):
            with transaction() as conn:
                cursor = get_cursor(conn)
                invoice = self._load_invoice(cursor, firm_id, invoice_id)
                if invoice['status'] == 'needs_review':
                    raise InvalidInvoiceStateError(
                        'Invoice needs review before approval submission')

                policy = invoice.get('approval_policy') or self._config.DEFAULT_POLICY
                auto_approved = (
                    policy == 'none'
                    and self._plan_repo.get_active(cursor, firm_id, invoice_id) is None
                )
                if auto_approved:
                    plan = self._auto_approve(cursor, invoice, requester_user_id)
                    created = False
                else:
                    plan, created = self._ensure_active_plan(
                        cursor, firm_id, invoice_id, requester_user_id)
                invoice_status = self._load_invoice(cursor, firm_id, invoice_id)['status']

            if auto_approved:
                hooks.fire('approval.approved', {
                    'firm_id': firm_id, 'invoice_id': invoice_id,
                    'plan_id': plan['id'], 'auto_approved': True,
                })
            elif created:
                self._fire_submitted(plan, requester_user_id)

            return {'plan': plan, 'policy': policy, 'invoice_status': invoice_status}

    def act_on_approval(self, firm_id, invoice_id, actor_user_id, action,
                        comment=None, scope_id=None):
        """Approve or reject the pending step the actor is eligible for.

        Not idempotent: repeating a successful call fails with 409
        (NoPendingStepError / StepAlreadyActedError) or 403 once the next
        step belongs to someone else.

        Returns:
            {'invoice_status': ..., 'plan_status': ...}
        """
        action = ApprovalAction.coerce(action)
        with LogContext(firm_id=firm_id, invoice_id=invoice_id,
                        actor_user_id=actor_user_id, action=action.value):
            with transaction() as conn:
                cursor = get_cursor(conn)
                outcome, events = self._act(
                    cursor, firm_id, invoice_id, actor_user_id, action,
                    comment, scope_id)

            for event_type, payload in events:
                hooks.fire(event_type, payload)
            return outcome

    def get_active_plan(self, firm_id, invoice_id):
        """Active plan tree for display, or None."""
        return self._plan_repo.get_active_tree(firm_id, invoice_id)

    def get_history(self, firm_id, invoice_id):
        """Append-only approval history, oldest first."""
        return self._audit_repo.get_for_invoice(firm_id, invoice_id)

    def get_inbox(self, firm_id, user_id, limit=None):
        """Pending steps the user can act on now, directly or as active substitute."""
        now = self._clock()
        substituted = self._setup_repo.get_substituted_approvers(firm_id, user_id, now)
        approver_ids = list(dict.fromkeys([user_id] + substituted))
        items = self._step_repo.get_inbox(
            firm_id, approver_ids, limit or self._config.INBOX_LIMIT)
        for item in items:
            item['acting_as_substitute'] = item['approver_user_id'] != user_id
        return items

    # ════════════════════════════════════════════
    # Plan creation
    # ════════════════════════════════════════════

    def _ensure_active_plan(self, cursor, firm_id, invoice_id, requester_user_id):
        """Returns (plan_tree, created)."""
        existing = self._plan_repo.get_active(cursor, firm_id, invoice_id)
        if existing:
            logger.debug(f"Active plan {existing['id']} already exists")
            return self._plan_repo.get_tree(cursor, existing['id']), False

        invoice = self._load_invoice(cursor, firm_id, invoice_id)
        if invoice['status'] == 'posted':
            raise InvalidInvoiceStateError('Invoice is already posted')

        amount = normalize_amount(invoice['total_amount'])
        chain = resolve_chain(
            partial(self._setup_repo.get, cursor), firm_id, requester_user_id, amount,
            max_depth=self._config.MAX_CHAIN_DEPTH,
        )

        plan = self._plan_repo.create_active(cursor, firm_id, invoice_id, requester_user_id)
        if plan is None:
            raced = self._plan_repo.get_active(cursor, firm_id, invoice_id)
            if raced is None:
                # The winner's plan already left 'active' before we could read it.
                raise ApprovalEngineError(
                    'Approval plan changed concurrently, reload the invoice', 409)
            logger.info(f"Lost plan creation race, returning plan {raced['id']}")
            return self._plan_repo.get_tree(cursor, raced['id']), False

        scope = self._plan_repo.create_scope(
            cursor, plan, amount, invoice.get('currency_code'))
        scope['steps'] = self._step_repo.create_chain(cursor, scope, chain)
        plan['scopes'] = [scope]

        self._invoice_repo.set_status(cursor, invoice_id, 'pending_approval')
        self._audit_repo.log(
            cursor, firm_id, invoice_id, requester_user_id, 'pending',
            comment='Sent for approval', acted_at=None,
        )
        logger.info(f"Created approval plan {plan['id']} with {len(chain)} step(s)",
                    extra={'plan_id': plan['id']})
        return plan, True

    def _auto_approve(self, cursor, invoice, requester_user_id):
        """Completed plan with one completed scope and no steps (policy 'none')."""
        if invoice['status'] == 'posted':
            raise InvalidInvoiceStateError('Invoice is already posted')
        now = self._clock()
        firm_id, invoice_id = invoice['firm_id'], invoice['id']

        plan = self._plan_repo.create_completed(
            cursor, firm_id, invoice_id, requester_user_id, completed_at=now)
        scope = self._plan_repo.create_scope(
            cursor, plan, normalize_amount(invoice['total_amount']),
            invoice.get('currency_code'), status='completed', completed_at=now,
        )
        scope['steps'] = []
        plan['scopes'] = [scope]

        self._invoice_repo.set_status(cursor, invoice_id, 'approved')
        self._audit_repo.log(
            cursor, firm_id, invoice_id, requester_user_id, 'approved',
            comment='Auto-approved (policy: none)', acted_at=now,
        )
        logger.info(f"Invoice auto-approved by policy, plan {plan['id']}",
                    extra={'plan_id': plan['id']})
        return plan

    # ════════════════════════════════════════════
    # Acting on steps
    # ════════════════════════════════════════════

    def _act(self, cursor, firm_id, invoice_id, actor_user_id, action, comment, scope_id):
        """Returns (outcome, events_to_fire)."""
        plan = self._plan_repo.get_active(cursor, firm_id, invoice_id)
        if not plan:
            raise NoActivePlanError('No active approval request for this invoice')

        pending = self._step_repo.get_pending_for_plan(cursor, plan['id'])
        if not pending:
            raise NoPendingStepError('No pending approval step')

        now = self._clock()
        step = self._select_step(cursor, firm_id, pending, actor_user_id, scope_id, now)

        updated = self._step_repo.transition_pending(
            cursor, step['id'], action.step_status, actor_user_id, now, comment)
        if updated != 1:
            logger.info(f"Step {step['id']} already acted on", extra={'step_id': step['id']})
            raise StepAlreadyActedError('Approval step already acted on')

        self._audit_repo.log(
            cursor, firm_id, invoice_id, actor_user_id, action.step_status,
            comment=comment, acted_at=now,
        )
        logger.info(f"Step {step['step_index']} {action.step_status}",
                    extra={'plan_id': plan['id'], 'step_id': step['id']})

        if action is ApprovalAction.REJECT:
            return self._reject_cascade(cursor, plan, actor_user_id, comment, now)
        if action is ApprovalAction.APPROVE:
            return self._approve_cascade(cursor, plan, step, now)
        raise ValueError(f'Unhandled approval action: {action}')

    def _select_step(self, cursor, firm_id, pending, actor_user_id, scope_id, now):
        lookup = partial(self._setup_repo.get, cursor)
        if scope_id:
            pending = [s for s in pending if str(s['scope_id']) == str(scope_id)]

        eligible = [
            s for s in pending
            if actor_user_id in allowed_actors(lookup, firm_id, s['approver_user_id'], now)
        ]

        if scope_id and not eligible:
            raise NotAuthorizedError('You are not allowed to act on this approval')
        if not scope_id and len(eligible) > 1:
            raise AmbiguousScopeError('Multiple pending approvals require a scopeId')
        if not eligible:
            log_with_context(logger, logging.WARNING, 'Actor is not eligible for any pending step',
                             actor_user_id=actor_user_id, scope_id=scope_id)
            raise NotAuthorizedError('You are not allowed to act on this approval')
        return eligible[0]

    def _reject_cascade(self, cursor, plan, actor_user_id, comment, now):
        """Rejection anywhere ends the whole plan."""
        self._plan_repo.mark_rejected(cursor, plan['id'], now)
        scopes = self._plan_repo.cancel_active_scopes(cursor, plan['id'], now)
        steps = self._step_repo.cancel_open_steps(cursor, plan['id'])
        invoice_status = self._invoice_repo.set_status(cursor, plan['invoice_id'], 'rejected')
        logger.info(f'Plan rejected: canceled {scopes} scope(s), {steps} step(s)',
                    extra={'plan_id': plan['id']})

        event = ('approval.rejected', {
            'firm_id': plan['firm_id'], 'invoice_id': plan['invoice_id'],
            'plan_id': plan['id'], 'actor_user_id': actor_user_id, 'comment': comment,
        })
        return {'invoice_status': invoice_status, 'plan_status': 'rejected'}, [event]

    def _approve_cascade(self, cursor, plan, step, now):
        events = []
        base = {'firm_id': plan['firm_id'], 'invoice_id': plan['invoice_id'], 'plan_id': plan['id']}

        next_step = self._step_repo.promote_next_blocked(cursor, step['scope_id'])
        if next_step:
            logger.info(f"Escalated to step {next_step['step_index']}",
                        extra={'plan_id': plan['id'], 'step_id': next_step['id']})
            events.append(('approval.step_advanced', dict(
                base, step_index=next_step['step_index'],
                approver_user_id=next_step['approver_user_id'])))
        else:
            self._plan_repo.complete_scope(cursor, step['scope_id'], now)

        if self._plan_repo.count_active_scopes(cursor, plan['id']) == 0:
            self._plan_repo.mark_completed(cursor, plan['id'], now)
            invoice_status = self._invoice_repo.set_status(cursor, plan['invoice_id'], 'approved')
            logger.info('Plan completed', extra={'plan_id': plan['id']})
            events.append(('approval.approved', dict(base, auto_approved=False)))
            return {'invoice_status': invoice_status, 'plan_status': 'completed'}, events

        invoice_status = self._invoice_repo.set_status(
            cursor, plan['invoice_id'], 'pending_approval')
        return {'invoice_status': invoice_status, 'plan_status': 'active'}, events

    # ════════════════════════════════════════════
    # Internal
    # ════════════════════════════════════════════

    def _load_invoice(self, cursor, firm_id, invoice_id):
        invoice = self._invoice_repo.get(cursor, firm_id, invoice_id)
        if not invoice:
            raise InvoiceNotFoundError('Invoice not found')
        return invoice

    def _fire_submitted(self, plan, requester_user_id):
        steps = plan['scopes'][0]['steps'] if plan.get('scopes') else []
        hooks.fire('approval.submitted', {
            'firm_id': plan['firm_id'], 'invoice_id': plan['invoice_id'],
            'plan_id': plan['id'], 'requester_user_id': requester_user_id,
            'chain': [s['approver_user_id'] for s in steps],
        })
