"""Repository for approval_user_setups table (the approval setup directory)."""

import logging
from apflow.core.base_repository import BaseRepository

logger = logging.getLogger('apflow.core.approvals.setup_repo')

_SETUP_COLUMNS = '''
    user_id, approver_user_id, approval_limit, active,
    substitute_user_id, substitute_from, substitute_to
'''


class SetupRepository(BaseRepository):

    def get(self, cursor, firm_id, user_id):
        """Setup row for (firm, user) read inside the caller's transaction."""
        return self.fetch_one(cursor, f'''
            SELECT {_SETUP_COLUMNS}
            FROM approval_user_setups
            WHERE firm_id = %s AND user_id = %s
        ''', (firm_id, user_id))

    def list_for_firm(self, firm_id):
        """Every firm member with their role and setup (None when not configured)."""
        rows = self.query_all('''
            SELECT m.user_id, m.role, u.email, u.name,
                   s.user_id AS setup_user_id, s.approver_user_id, s.approval_limit,
                   s.substitute_user_id, s.substitute_from, s.substitute_to, s.active
            FROM firm_memberships m
            JOIN users u ON u.id = m.user_id
            LEFT JOIN approval_user_setups s ON s.firm_id = m.firm_id AND s.user_id = m.user_id
            WHERE m.firm_id = %s
            ORDER BY m.created_at
        ''', (firm_id,))
        users = []
        for row in rows:
            setup = None
            if row['setup_user_id']:
                setup = {
                    'user_id': row['setup_user_id'],
                    'approver_user_id': row['approver_user_id'],
                    'approval_limit': row['approval_limit'],
                    'substitute_user_id': row['substitute_user_id'],
                    'substitute_from': row['substitute_from'],
                    'substitute_to': row['substitute_to'],
                    'active': row['active'],
                }
            users.append({
                'user_id': row['user_id'],
                'role': row['role'],
                'email': row['email'],
                'name': row['name'],
                'setup': setup,
            })
        return users

    def upsert(self, firm_id, user_id, approver_user_id=None, approval_limit=None,
               substitute_user_id=None, substitute_from=None, substitute_to=None,
               active=True):
        row = self.execute(f'''
            INSERT INTO approval_user_setups
                (firm_id, user_id, approver_user_id, approval_limit,
                 substitute_user_id, substitute_from, substitute_to, active)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (firm_id, user_id) DO UPDATE SET
                approver_user_id = EXCLUDED.approver_user_id,
                approval_limit = EXCLUDED.approval_limit,
                substitute_user_id = EXCLUDED.substitute_user_id,
                substitute_from = EXCLUDED.substitute_from,
                substitute_to = EXCLUDED.substitute_to,
                active = EXCLUDED.active,
                updated_at = NOW()
            RETURNING {_SETUP_COLUMNS}
        ''', (
            firm_id, user_id, approver_user_id, approval_limit,
            substitute_user_id, substitute_from, substitute_to, active,
        ), returning=True)
        logger.info(f'Approval setup saved for user {user_id} in firm {firm_id}')
        return row

    def get_substituted_approvers(self, firm_id, substitute_user_id, now):
        """Approver ids whose active setup names `substitute_user_id` as substitute right now."""
        rows = self.query_all('''
            SELECT user_id FROM approval_user_setups
            WHERE firm_id = %s AND substitute_user_id = %s AND active = TRUE
            AND (substitute_from IS NULL OR substitute_from <= %s)
            AND (substitute_to IS NULL OR substitute_to >= %s)
        ''', (firm_id, substitute_user_id, now, now))
        return [r['user_id'] for r in rows]

    def is_firm_member(self, firm_id, user_id):
        row = self.query_one(
            'SELECT 1 AS ok FROM firm_memberships WHERE firm_id = %s AND user_id = %s',
            (firm_id, user_id),
        )
        return row is not None
