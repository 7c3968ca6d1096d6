"""User Repository - Data access for session users and their firm membership."""
import logging
from typing import Optional, Dict, Any

from apflow.core.base_repository import BaseRepository

logger = logging.getLogger('apflow.core.auth.user_repository')


class UserRepository(BaseRepository):
    """Loads the user behind a Flask-Login session id."""

    def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a user with their primary (oldest) firm membership."""
        return self.query_one('''
            SELECT u.id, u.email, u.name, u.is_active, m.firm_id, m.role
            FROM users u
            JOIN firm_memberships m ON m.user_id = u.id
            WHERE u.id = %s
            ORDER BY m.created_at
            LIMIT 1
        ''', (user_id,))
