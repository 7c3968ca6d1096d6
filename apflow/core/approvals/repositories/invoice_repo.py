"""Repository for the invoice columns the approval engine reads and writes."""

import logging
from apflow.core.base_repository import BaseRepository

logger = logging.getLogger('apflow.core.approvals.invoice_repo')


class InvoiceRepository(BaseRepository):

    def get(self, cursor, firm_id, invoice_id):
        return self.fetch_one(cursor, '''
            SELECT id, firm_id, status, total_amount, currency_code, approval_policy
            FROM invoices
            WHERE id = %s AND firm_id = %s
        ''', (invoice_id, firm_id))

    def set_status(self, cursor, invoice_id, status):
        row = self.fetch_one(cursor, '''
            UPDATE invoices SET status = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING status
        ''', (status, invoice_id))
        return row['status'] if row else None
