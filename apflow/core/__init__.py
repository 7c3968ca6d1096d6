"""apflow Core Platform Module.

Shared infrastructure used by the approval engine:
- Base repository over the psycopg2 connection pool
- Session user model
- Logging and API helpers
"""
