"""apflow Core Authentication Module.

Session users and firm membership lookup for Flask-Login. Login itself is
handled by the surrounding application.
"""
