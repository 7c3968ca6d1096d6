"""Database schema initialization.

CREATE TABLE / CREATE INDEX statements for the approval engine and the
identity/invoice tables it reads. All statements are idempotent.

Called by database.init_db() at application startup.
"""


def create_schema(conn, cursor):
    """Create all approval tables and indexes.

    Args:
        conn: Database connection (caller commits)
        cursor: Database cursor from get_cursor(conn)
    """
    # Identity tables owned by the surrounding application
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS firms (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT NOT NULL UNIQUE,
            name TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS firm_memberships (
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users (id) ON DELETE CASCADE,
            role TEXT NOT NULL DEFAULT 'member',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (firm_id, user_id),
            CONSTRAINT chk_firm_membership_role CHECK (role IN ('owner', 'admin', 'member'))
        )
    ''')

    # Invoices (columns the approval engine touches)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS invoices (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            invoice_no TEXT,
            vendor_name TEXT,
            invoice_date DATE,
            due_date DATE,
            total_amount NUMERIC(18, 2),
            currency_code TEXT,
            status TEXT NOT NULL DEFAULT 'new',
            approval_policy TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoices_firm_status ON invoices (firm_id, status)')

    # ============== Approval setup directory ==============

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS approval_user_setups (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users (id) ON DELETE CASCADE,
            approver_user_id UUID REFERENCES users (id) ON DELETE SET NULL,
            approval_limit NUMERIC(18, 2),
            substitute_user_id UUID REFERENCES users (id) ON DELETE SET NULL,
            substitute_from TIMESTAMPTZ,
            substitute_to TIMESTAMPTZ,
            active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT approval_user_setups_unique_firm_user UNIQUE (firm_id, user_id)
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_approval_user_setups_firm_approver ON approval_user_setups (firm_id, approver_user_id)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_approval_user_setups_firm_substitute ON approval_user_setups (firm_id, substitute_user_id)')

    # ============== Approval plans ==============

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS invoice_approval_plans (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            invoice_id UUID NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
            requester_user_id UUID REFERENCES users (id) ON DELETE SET NULL,
            status TEXT NOT NULL DEFAULT 'active',
            completed_at TIMESTAMPTZ,
            rejected_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT chk_approval_plan_status CHECK (status IN ('active', 'completed', 'rejected'))
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoice_approval_plans_firm_invoice ON invoice_approval_plans (firm_id, invoice_id)')
    # One active plan per invoice; ensure_active_plan relies on this for idempotency.
    cursor.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS uniq_invoice_approval_plans_active_invoice
        ON invoice_approval_plans (invoice_id)
        WHERE status = 'active'
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS invoice_approval_scopes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            invoice_id UUID NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
            plan_id UUID NOT NULL REFERENCES invoice_approval_plans (id) ON DELETE CASCADE,
            scope_type TEXT NOT NULL,
            scope_key TEXT,
            amount NUMERIC(18, 2) NOT NULL,
            currency_code TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            completed_at TIMESTAMPTZ,
            canceled_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT chk_approval_scope_status CHECK (status IN ('active', 'completed', 'canceled'))
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoice_approval_scopes_plan ON invoice_approval_scopes (plan_id, status)')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS invoice_approval_steps (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            invoice_id UUID NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
            scope_id UUID NOT NULL REFERENCES invoice_approval_scopes (id) ON DELETE CASCADE,
            step_index INT NOT NULL,
            approver_user_id UUID NOT NULL REFERENCES users (id) ON DELETE CASCADE,
            status TEXT NOT NULL DEFAULT 'blocked',
            comment TEXT,
            acted_by_user_id UUID REFERENCES users (id) ON DELETE SET NULL,
            acted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT invoice_approval_steps_unique_scope_step UNIQUE (scope_id, step_index),
            CONSTRAINT chk_approval_step_status CHECK (
                status IN ('blocked', 'pending', 'approved', 'rejected', 'canceled')
            )
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoice_approval_steps_scope_status ON invoice_approval_steps (scope_id, status)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoice_approval_steps_firm_approver ON invoice_approval_steps (firm_id, approver_user_id, status)')
    cursor.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS uniq_invoice_approval_steps_pending_per_scope
        ON invoice_approval_steps (scope_id)
        WHERE status = 'pending'
    ''')

    # ============== Approval history (append-only) ==============

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS invoice_approvals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            firm_id UUID NOT NULL REFERENCES firms (id) ON DELETE CASCADE,
            invoice_id UUID NOT NULL REFERENCES invoices (id) ON DELETE CASCADE,
            user_id UUID REFERENCES users (id) ON DELETE SET NULL,
            status TEXT NOT NULL,
            comment TEXT,
            acted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT chk_invoice_approval_status CHECK (status IN ('pending', 'approved', 'rejected'))
        )
    ''')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_invoice_approvals_invoice ON invoice_approvals (firm_id, invoice_id, created_at)')
