"""Repository for invoice_approvals table. Append-only."""

import logging
from apflow.core.base_repository import BaseRepository

logger = logging.getLogger('apflow.core.approvals.audit_repo')


class AuditRepository(BaseRepository):

    def log(self, cursor, firm_id, invoice_id, user_id, status, comment=None, acted_at=None):
        """Append an entry to the approval history inside the caller's transaction."""
        row = self.fetch_one(cursor, '''
            INSERT INTO invoice_approvals (firm_id, invoice_id, user_id, status, comment, acted_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
        ''', (firm_id, invoice_id, user_id, status, comment, acted_at))
        return row['id']

    def get_for_invoice(self, firm_id, invoice_id):
        return self.query_all('''
            SELECT a.id, a.user_id, a.status, a.comment, a.acted_at, a.created_at,
                   u.name AS user_name, u.email AS user_email
            FROM invoice_approvals a
            LEFT JOIN users u ON u.id = a.user_id
            WHERE a.firm_id = %s AND a.invoice_id = %s
            ORDER BY a.created_at, a.id
        ''', (firm_id, invoice_id))
