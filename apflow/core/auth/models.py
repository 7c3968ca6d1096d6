"""apflow Core Auth Models.

User model for Flask-Login. A session user is always bound to one firm
membership; approval operations are scoped to that firm.
"""
from flask_login import UserMixin

APPROVAL_ADMIN_ROLES = ('owner', 'admin')


class User(UserMixin):
    """User class for Flask-Login."""

    def __init__(self, user_data):
        self.id = user_data['id']
        self.email = user_data['email']
        self.name = user_data.get('name')
        self.firm_id = user_data['firm_id']
        self.role = user_data.get('role')
        self.is_active_user = user_data.get('is_active', True)

    @property
    def is_active(self):
        return self.is_active_user

    @property
    def can_manage_approvals(self) -> bool:
        """Owners and admins maintain the approval setup directory."""
        return self.role in APPROVAL_ADMIN_ROLES
