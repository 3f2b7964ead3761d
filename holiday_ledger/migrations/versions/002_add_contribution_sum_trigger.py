"""Add contribution sum integrity trigger.

Revision: 002_add_contribution_sum_trigger
Created:  2026-10-19

Database-level enforcement of:

    SUM(contributions.amount_due) = expenses.total   for every expense

The split engine maintains this in application code; this trigger is the
last line of defence against writes that bypass it.

Trigger design:
  Function : fn_check_contribution_sum()
    - Determines the affected expense_id from NEW (INSERT/UPDATE) or
      OLD (DELETE).
    - Reads expenses.total for it. A missing expense (deleted in the same
      transaction) is skipped: its contributions are gone too.
    - Raises EXCEPTION (SQLSTATE '23514' — check_violation) if
      SUM(amount_due) differs from the total.

  Trigger  : trg_contributions_sum_check
    - CONSTRAINT TRIGGER, AFTER INSERT OR UPDATE OR DELETE ON contributions
    - DEFERRABLE INITIALLY DEFERRED, FOR EACH ROW

  Deferred: a re-split removes, adjusts and inserts rows one at a time; only
  the state at COMMIT has to add up.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_add_contribution_sum_trigger"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


# ── SQL definitions ────────────────────────────────────────────────────────

_CREATE_FUNCTION = """
CREATE OR REPLACE FUNCTION fn_check_contribution_sum()
RETURNS TRIGGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_expense_id INTEGER;
    v_due_sum    BIGINT;
    v_total      BIGINT;
BEGIN
    IF TG_OP = 'DELETE' THEN
        v_expense_id := OLD.expense_id;
    ELSE
        v_expense_id := NEW.expense_id;
    END IF;

    SELECT total
    INTO v_total
    FROM expenses
    WHERE id = v_expense_id;

    IF NOT FOUND THEN
        RETURN NULL;
    END IF;

    SELECT COALESCE(SUM(amount_due), 0)
    INTO v_due_sum
    FROM contributions
    WHERE expense_id = v_expense_id;

    IF v_due_sum <> v_total THEN
        RAISE EXCEPTION
            'contribution dues (%) do not add up to expense total (%) for expense id=%',
            v_due_sum, v_total, v_expense_id
            USING ERRCODE = '23514';  -- check_violation
    END IF;

    RETURN NULL;
END;
$$;
"""

_CREATE_TRIGGER = """
CREATE CONSTRAINT TRIGGER trg_contributions_sum_check
    AFTER INSERT OR UPDATE OR DELETE
    ON contributions
    DEFERRABLE INITIALLY DEFERRED
    FOR EACH ROW
    EXECUTE FUNCTION fn_check_contribution_sum();
"""

_DROP_TRIGGER = "DROP TRIGGER IF EXISTS trg_contributions_sum_check ON contributions;"
_DROP_FUNCTION = "DROP FUNCTION IF EXISTS fn_check_contribution_sum();"


def upgrade() -> None:
    """
    Creates the function first (the trigger references it), then the trigger.

    Only meaningful on PostgreSQL; SQLite test databases are built with
    db.create_all() and rely on the service-layer check alone.
    """
    op.execute(_CREATE_FUNCTION)
    op.execute(_CREATE_TRIGGER)


def downgrade() -> None:
    """Drop order is the reverse of creation: trigger first, then the function."""
    op.execute(_DROP_TRIGGER)
    op.execute(_DROP_FUNCTION)
