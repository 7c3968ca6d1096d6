"""Repository for invoice_approval_steps table."""

import logging
from apflow.core.base_repository import BaseRepository

logger = logging.getLogger('apflow.core.approvals.step_repo')


class StepRepository(BaseRepository):

    def create_chain(self, cursor, scope, approver_user_ids):
        """Insert one step per approver: index 1 pending, the rest blocked."""
        steps = []
        for idx, approver_user_id in enumerate(approver_user_ids, start=1):
            steps.append(self.fetch_one(cursor, '''
                INSERT INTO invoice_approval_steps
                    (firm_id, invoice_id, scope_id, step_index, approver_user_id, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
            ''', (
                scope['firm_id'], scope['invoice_id'], scope['id'], idx, approver_user_id,
                'pending' if idx == 1 else 'blocked',
            )))
        return steps

    def get_pending_for_plan(self, cursor, plan_id):
        """Pending steps of the plan's active scopes, by scope then index."""
        return self.fetch_all(cursor, '''
            SELECT st.id, st.scope_id, st.step_index, st.approver_user_id
            FROM invoice_approval_steps st
            JOIN invoice_approval_scopes sc ON sc.id = st.scope_id
            WHERE sc.plan_id = %s AND sc.status = 'active' AND st.status = 'pending'
            ORDER BY sc.created_at, sc.id, st.step_index
        ''', (plan_id,))

    def transition_pending(self, cursor, step_id, status, acted_by_user_id, acted_at, comment=None):
        """Move a step out of 'pending'. Returns rowcount: 0 means someone got there first."""
        return self.run(cursor, '''
            UPDATE invoice_approval_steps
            SET status = %s, acted_at = %s, acted_by_user_id = %s, comment = %s
            WHERE id = %s AND status = 'pending'
        ''', (status, acted_at, acted_by_user_id, comment, step_id))

    def promote_next_blocked(self, cursor, scope_id):
        """Flip the lowest-index blocked step of the scope to pending; None if there is none."""
        return self.fetch_one(cursor, '''
            UPDATE invoice_approval_steps SET status = 'pending'
            WHERE id = (
                SELECT id FROM invoice_approval_steps
                WHERE scope_id = %s AND status = 'blocked'
                ORDER BY step_index
                LIMIT 1
            )
            RETURNING id, scope_id, step_index, approver_user_id
        ''', (scope_id,))

    def cancel_open_steps(self, cursor, plan_id):
        return self.run(cursor, '''
            UPDATE invoice_approval_steps SET status = 'canceled'
            WHERE status IN ('blocked', 'pending')
            AND scope_id IN (SELECT id FROM invoice_approval_scopes WHERE plan_id = %s)
        ''', (plan_id,))

    def get_inbox(self, firm_id, approver_user_ids, limit=50):
        """Pending steps assigned to any of `approver_user_ids`, oldest first."""
        if not approver_user_ids:
            return []
        return self.query_all('''
            SELECT st.id AS step_id, st.scope_id, st.step_index, st.approver_user_id,
                   st.created_at,
                   i.id AS invoice_id, i.invoice_no, i.status AS invoice_status,
                   i.total_amount, i.currency_code AS invoice_currency_code,
                   i.invoice_date, i.due_date, i.vendor_name,
                   sc.scope_type, sc.scope_key, sc.amount,
                   sc.currency_code AS scope_currency_code,
                   p.id AS plan_id, p.created_at AS requested_at,
                   p.requester_user_id,
                   ru.name AS requester_name, ru.email AS requester_email,
                   au.name AS approver_name, au.email AS approver_email
            FROM invoice_approval_steps st
            JOIN invoice_approval_scopes sc ON sc.id = st.scope_id
            JOIN invoice_approval_plans p ON p.id = sc.plan_id
            JOIN invoices i ON i.id = st.invoice_id
            LEFT JOIN users ru ON ru.id = p.requester_user_id
            LEFT JOIN users au ON au.id = st.approver_user_id
            WHERE st.firm_id = %s
            AND st.status = 'pending'
            AND st.approver_user_id = ANY(%s::uuid[])
            AND sc.status = 'active'
            AND p.status = 'active'
            ORDER BY st.created_at
            LIMIT %s
        ''', (firm_id, list(approver_user_ids), limit))
