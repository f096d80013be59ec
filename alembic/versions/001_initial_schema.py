"""001 – Initial schema: directory, leave catalog, ledger, applications, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("gender_type", ["male", "female", "other"]),
    ("gender_eligibility", ["all", "male", "female", "other"]),
    ("user_role", ["employee", "manager", "hr_admin", "tenant_admin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("half_day_type", ["first_half", "second_half"]),
    ("accrual_type", ["annual", "monthly", "prorated", "none"]),
    (
        "ledger_transaction_type",
        [
            "accrual",
            "carry_forward",
            "application",
            "approval",
            "rejection",
            "cancellation",
            "encashment",
            "lapse",
        ],
    ),
    ("approval_action", ["approve", "reject", "cancel"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id            UUID NOT NULL,
            employee_code        VARCHAR(50)  NOT NULL,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            email                VARCHAR(255),
            gender               gender_type,
            location             VARCHAR(150),
            designation_id       VARCHAR(64),
            reporting_manager_id UUID REFERENCES employees(id),
            date_of_joining      DATE,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_employee_tenant_code UNIQUE (tenant_id, employee_code)
        )
    """)
    op.execute(
        "CREATE INDEX ix_employees_tenant_manager ON employees(tenant_id, reporting_manager_id)"
    )

    # ── 2. role_assignments ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE role_assignments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id   UUID NOT NULL,
            employee_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            role        user_role NOT NULL,
            assigned_at TIMESTAMPTZ DEFAULT NOW(),
            is_active   BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_role_active
            ON role_assignments(tenant_id, employee_id, role)
            WHERE is_active = TRUE
    """)

    # ── 3. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id            UUID NOT NULL,
            code                 VARCHAR(20)  NOT NULL,
            name                 VARCHAR(100) NOT NULL,
            description          TEXT,
            max_days             INTEGER,
            carry_forward        BOOLEAN DEFAULT FALSE,
            carry_forward_limit  INTEGER,
            requires_approval    BOOLEAN DEFAULT TRUE,
            is_paid              BOOLEAN DEFAULT TRUE,
            half_day_allowed     BOOLEAN DEFAULT FALSE,
            attachment_required  BOOLEAN DEFAULT FALSE,
            max_days_per_request INTEGER,
            gender_eligibility   gender_eligibility DEFAULT 'all',
            location_eligibility JSONB DEFAULT '[]'::jsonb,
            grade_eligibility    JSONB DEFAULT '[]'::jsonb,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_type_tenant_code UNIQUE (tenant_id, code)
        )
    """)

    # ── 4. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id                 UUID NOT NULL,
            leave_type_id             UUID NOT NULL REFERENCES leave_types(id),
            name                      VARCHAR(150) NOT NULL,
            accrual_type              accrual_type NOT NULL DEFAULT 'annual',
            accrual_days              NUMERIC(7,2) NOT NULL,
            accrual_period            INTEGER DEFAULT 12,
            prorated_for_joiners      BOOLEAN DEFAULT TRUE,
            carry_forward_enabled     BOOLEAN DEFAULT FALSE,
            carry_forward_limit       NUMERIC(7,2),
            carry_forward_expiry_days INTEGER,
            encashment_enabled        BOOLEAN DEFAULT FALSE,
            encashment_limit          NUMERIC(7,2),
            lapsing_enabled           BOOLEAN DEFAULT FALSE,
            lapsing_date              DATE,
            location_filter           JSONB DEFAULT '[]'::jsonb,
            grade_filter              JSONB DEFAULT '[]'::jsonb,
            effective_from            DATE NOT NULL,
            effective_to              DATE,
            is_default                BOOLEAN DEFAULT FALSE,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_leave_policy_default
            ON leave_policies(tenant_id, leave_type_id)
            WHERE is_default
    """)
    op.execute("""
        CREATE INDEX ix_leave_policy_effective
            ON leave_policies(tenant_id, leave_type_id, effective_from)
    """)

    # ── 5. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id     UUID NOT NULL,
            employee_id   UUID NOT NULL REFERENCES employees(id),
            leave_type_id UUID NOT NULL REFERENCES leave_types(id),
            year          INTEGER NOT NULL,
            total_days    NUMERIC(7,2) NOT NULL DEFAULT 0,
            used_days     NUMERIC(7,2) NOT NULL DEFAULT 0,
            pending_days  NUMERIC(7,2) NOT NULL DEFAULT 0,
            carry_forward NUMERIC(7,2) NOT NULL DEFAULT 0,
            version       INTEGER NOT NULL,
            updated_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (tenant_id, employee_id, leave_type_id, year)
        )
    """)

    # ── 6. leave_applications ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_applications (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id           UUID NOT NULL,
            employee_id         UUID NOT NULL REFERENCES employees(id),
            leave_type_id       UUID NOT NULL REFERENCES leave_types(id),
            start_date          DATE NOT NULL,
            end_date            DATE NOT NULL,
            days                NUMERIC(7,2) NOT NULL,
            is_half_day         BOOLEAN DEFAULT FALSE,
            half_day_type       half_day_type,
            reason              TEXT,
            attachments         JSONB DEFAULT '[]'::jsonb,
            status              leave_status DEFAULT 'pending',
            current_approver_id UUID REFERENCES employees(id),
            approved_by         VARCHAR(64),
            approved_at         TIMESTAMPTZ,
            rejected_by         VARCHAR(64),
            rejected_at         TIMESTAMPTZ,
            rejection_reason    TEXT,
            cancelled_by        VARCHAR(64),
            cancelled_at        TIMESTAMPTZ,
            cancellation_reason TEXT,
            comments            TEXT,
            applied_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_app_tenant_employee ON leave_applications(tenant_id, employee_id)"
    )
    op.execute(
        "CREATE INDEX ix_leave_app_tenant_approver "
        "ON leave_applications(tenant_id, current_approver_id)"
    )

    # ── 7. leave_ledger ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_ledger (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id            UUID NOT NULL,
            employee_id          UUID NOT NULL REFERENCES employees(id),
            leave_type_id        UUID NOT NULL REFERENCES leave_types(id),
            leave_policy_id      UUID REFERENCES leave_policies(id) ON DELETE SET NULL,
            leave_application_id UUID REFERENCES leave_applications(id),
            transaction_type     ledger_transaction_type NOT NULL,
            days                 NUMERIC(7,2) NOT NULL,
            balance_before       NUMERIC(7,2) NOT NULL,
            balance_after        NUMERIC(7,2) NOT NULL,
            year                 INTEGER NOT NULL,
            effective_date       DATE NOT NULL,
            description          TEXT,
            created_by           VARCHAR(64) NOT NULL,
            created_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_ledger_key
            ON leave_ledger(tenant_id, employee_id, leave_type_id, year)
    """)
    op.execute(
        "CREATE INDEX ix_leave_ledger_application ON leave_ledger(leave_application_id)"
    )

    # ── 8. leave_approval_history ─────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_approval_history (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_application_id UUID NOT NULL REFERENCES leave_applications(id),
            approver_id          UUID REFERENCES employees(id),
            action               approval_action NOT NULL,
            status               leave_status NOT NULL,
            comments             TEXT,
            created_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 9. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            tenant_id   UUID NOT NULL,
            actor_id    VARCHAR(64),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_audit_trail_tenant_entity ON audit_trail(tenant_id, entity_type, entity_id)"
    )
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")

    # ── Ledger and approval history are append-only ──────────────────────
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_append_only_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% rows are append-only', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql
    """)
    for table in ("leave_ledger", "leave_approval_history"):
        op.execute(
            f"CREATE TRIGGER trg_{table}_append_only "
            f"BEFORE UPDATE OR DELETE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION reject_append_only_change()"
        )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_approval_history",
        "leave_ledger",
        "leave_applications",
        "leave_balances",
        "leave_policies",
        "leave_types",
        "role_assignments",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute("DROP FUNCTION IF EXISTS reject_append_only_change()")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
