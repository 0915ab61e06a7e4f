"""
Create students, admins, complaints and ticket counter tables

Revision ID: 20261019_001_create_ticketing_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op

revision = "20261019_001_create_ticketing_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS students (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        email VARCHAR NOT NULL UNIQUE,
        student_number VARCHAR NOT NULL UNIQUE,
        room_number VARCHAR,
        block VARCHAR,
        phone VARCHAR,
        password_hash VARCHAR NOT NULL,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """
    )

    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS admins (
        id VARCHAR PRIMARY KEY,
        full_name VARCHAR NOT NULL,
        email VARCHAR NOT NULL UNIQUE,
        department VARCHAR,
        phone VARCHAR,
        password_hash VARCHAR NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT true,
        can_manage_complaints BOOLEAN NOT NULL DEFAULT true,
        can_manage_users BOOLEAN NOT NULL DEFAULT false,
        can_manage_admins BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """
    )

    # ticket_id is UNIQUE: duplicates are refused at commit whatever the allocator does
    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS complaints (
        id VARCHAR PRIMARY KEY,
        ticket_id VARCHAR NOT NULL UNIQUE,
        student_id VARCHAR NOT NULL REFERENCES students(id),
        category VARCHAR NOT NULL,
        title VARCHAR NOT NULL,
        description VARCHAR NOT NULL,
        location VARCHAR NOT NULL,
        priority VARCHAR NOT NULL DEFAULT 'medium',
        urgency VARCHAR NOT NULL DEFAULT 'moderate',
        status VARCHAR NOT NULL DEFAULT 'pending',
        assigned_to VARCHAR REFERENCES admins(id),
        resolved_by VARCHAR REFERENCES admins(id),
        resolved_at TIMESTAMPTZ,
        resolution_notes VARCHAR,
        resolution_solution VARCHAR,
        rating_score INTEGER,
        rating_feedback VARCHAR,
        rated_at TIMESTAMPTZ,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ DEFAULT now(),
        updated_at TIMESTAMPTZ
    )
    """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_complaints_ticket_id ON complaints (ticket_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_complaints_student_id ON complaints (student_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_complaints_status ON complaints (status)")

    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS complaint_images (
        id VARCHAR PRIMARY KEY,
        complaint_id VARCHAR NOT NULL REFERENCES complaints(id),
        url VARCHAR NOT NULL,
        filename VARCHAR,
        original_name VARCHAR,
        mime_type VARCHAR,
        size INTEGER,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_complaint_images_complaint_id ON complaint_images (complaint_id)"
    )

    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS assignment_audits (
        id SERIAL PRIMARY KEY,
        complaint_id VARCHAR NOT NULL REFERENCES complaints(id),
        assigned_by VARCHAR NOT NULL,
        assigned_to VARCHAR NOT NULL,
        created_at TIMESTAMPTZ DEFAULT now()
    )
    """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_assignment_audits_complaint_id ON assignment_audits (complaint_id)"
    )

    # Ticket counter used by the sequence allocator
    op.execute(
        r"""
    CREATE TABLE IF NOT EXISTS ticket_counters (
        name VARCHAR PRIMARY KEY,
        value INTEGER NOT NULL DEFAULT 0
    )
    """
    )
    # Seed past the highest numeric ticket, not just the row count
    op.execute(
        r"""
    INSERT INTO ticket_counters (name, value)
    SELECT 'complaints', GREATEST(
        (SELECT COUNT(*) FROM complaints),
        (SELECT COALESCE(MAX(CAST(SUBSTRING(ticket_id FROM 4) AS BIGINT)), 0)
           FROM complaints WHERE ticket_id ~ '^TKT[0-9]+$')
    )
    ON CONFLICT (name) DO UPDATE SET value = GREATEST(ticket_counters.value, EXCLUDED.value)
    """
    )


def downgrade():
    op.execute("DROP TABLE IF EXISTS ticket_counters")
    op.execute("DROP TABLE IF EXISTS assignment_audits")
    op.execute("DROP TABLE IF EXISTS complaint_images")
    op.execute("DROP TABLE IF EXISTS complaints")
    op.execute("DROP TABLE IF EXISTS admins")
    op.execute("DROP TABLE IF EXISTS students")
