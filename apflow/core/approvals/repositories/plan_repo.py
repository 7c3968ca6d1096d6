"""Repository for invoice_approval_plans and invoice_approval_scopes tables."""

import logging

import psycopg2.errors

from apflow.core.base_repository import BaseRepository
from apflow.database import get_cursor, get_db_connection

logger = logging.getLogger('apflow.core.approvals.plan_repo')

ACTIVE_PLAN_CONSTRAINT = 'uniq_invoice_approval_plans_active_invoice'


class PlanRepository(BaseRepository):

    # ---- Plans ----

    def get_active(self, cursor, firm_id, invoice_id):
        return self.fetch_one(cursor, '''
            SELECT * FROM invoice_approval_plans
            WHERE firm_id = %s AND invoice_id = %s AND status = 'active'
        ''', (firm_id, invoice_id))

    def get_tree(self, cursor, plan_id):
        """Plan with its scopes, each with steps ordered by step_index."""
        plan = self.fetch_one(
            cursor, 'SELECT * FROM invoice_approval_plans WHERE id = %s', (plan_id,))
        if not plan:
            return None
        scopes = self.fetch_all(cursor, '''
            SELECT * FROM invoice_approval_scopes
            WHERE plan_id = %s
            ORDER BY created_at, id
        ''', (plan_id,))
        steps = self.fetch_all(cursor, '''
            SELECT st.* FROM invoice_approval_steps st
            JOIN invoice_approval_scopes sc ON sc.id = st.scope_id
            WHERE sc.plan_id = %s
            ORDER BY st.scope_id, st.step_index
        ''', (plan_id,))
        for scope in scopes:
            scope['steps'] = [s for s in steps if s['scope_id'] == scope['id']]
        plan['scopes'] = scopes
        return plan

    def get_active_tree(self, firm_id, invoice_id):
        """Read-only lookup outside any engine transaction."""
        with get_db_connection() as conn:
            cursor = get_cursor(conn)
            plan = self.get_active(cursor, firm_id, invoice_id)
            return self.get_tree(cursor, plan['id']) if plan else None

    def create_active(self, cursor, firm_id, invoice_id, requester_user_id):
        """Insert an active plan, or return None if another one already holds the slot.

        Runs under a savepoint so the unique violation on the one-active-plan
        index leaves the caller's transaction usable for the re-read.
        """
        cursor.execute('SAVEPOINT create_active_plan')
        try:
            cursor.execute('''
                INSERT INTO invoice_approval_plans
                    (firm_id, invoice_id, requester_user_id, status)
                VALUES (%s, %s, %s, 'active')
                RETURNING *
            ''', (firm_id, invoice_id, requester_user_id))
            plan = dict(cursor.fetchone())
        except psycopg2.errors.UniqueViolation as e:
            if e.diag.constraint_name != ACTIVE_PLAN_CONSTRAINT:
                raise
            cursor.execute('ROLLBACK TO SAVEPOINT create_active_plan')
            logger.info(f'Active plan for invoice {invoice_id} created concurrently')
            return None
        cursor.execute('RELEASE SAVEPOINT create_active_plan')
        return plan

    def create_completed(self, cursor, firm_id, invoice_id, requester_user_id, completed_at):
        return self.fetch_one(cursor, '''
            INSERT INTO invoice_approval_plans
                (firm_id, invoice_id, requester_user_id, status, completed_at)
            VALUES (%s, %s, %s, 'completed', %s)
            RETURNING *
        ''', (firm_id, invoice_id, requester_user_id, completed_at))

    def mark_completed(self, cursor, plan_id, completed_at):
        return self.run(cursor, '''
            UPDATE invoice_approval_plans SET status = 'completed', completed_at = %s
            WHERE id = %s AND status = 'active'
        ''', (completed_at, plan_id))

    def mark_rejected(self, cursor, plan_id, rejected_at):
        return self.run(cursor, '''
            UPDATE invoice_approval_plans SET status = 'rejected', rejected_at = %s
            WHERE id = %s AND status = 'active'
        ''', (rejected_at, plan_id))

    # ---- Scopes ----

    def create_scope(self, cursor, plan, amount, currency_code, scope_type='invoice_total',
                     scope_key=None, status='active', completed_at=None):
        return self.fetch_one(cursor, '''
            INSERT INTO invoice_approval_scopes
                (firm_id, invoice_id, plan_id, scope_type, scope_key,
                 amount, currency_code, status, completed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        ''', (
            plan['firm_id'], plan['invoice_id'], plan['id'], scope_type, scope_key,
            amount, currency_code, status, completed_at,
        ))

    def complete_scope(self, cursor, scope_id, completed_at):
        return self.run(cursor, '''
            UPDATE invoice_approval_scopes SET status = 'completed', completed_at = %s
            WHERE id = %s AND status = 'active'
        ''', (completed_at, scope_id))

    def cancel_active_scopes(self, cursor, plan_id, canceled_at):
        return self.run(cursor, '''
            UPDATE invoice_approval_scopes SET status = 'canceled', canceled_at = %s
            WHERE plan_id = %s AND status = 'active'
        ''', (canceled_at, plan_id))

    def count_active_scopes(self, cursor, plan_id):
        row = self.fetch_one(cursor, '''
            SELECT COUNT(*) AS cnt FROM invoice_approval_scopes
            WHERE plan_id = %s AND status = 'active'
        ''', (plan_id,))
        return row['cnt']
