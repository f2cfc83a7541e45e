"""Unit tests for DDL module."""

from audit_queue.ddl import AUDIT_QUEUE_TABLE_DDL, AUDITS_TABLE_DDL, SCHEMA_DDL


def test_schema_ddl_combines_tables():
    """Test that SCHEMA_DDL holds both table definitions."""
    assert AUDITS_TABLE_DDL in SCHEMA_DDL
    assert AUDIT_QUEUE_TABLE_DDL in SCHEMA_DDL


def test_audit_queue_ddl_contains_required_columns():
    """Test that the queue DDL contains all required columns."""
    required_columns = [
        "id",
        "audit_id",
        "status",
        "created_at",
        "started_at",
        "completed_at",
        "retry_count",
        "last_error",
    ]

    for column in required_columns:
        assert column in AUDIT_QUEUE_TABLE_DDL, f"Column {column} not found in DDL"


def test_audits_ddl_contains_email_marker():
    """Test that the audits DDL carries the report and email marker columns."""
    for column in ["report_html", "email_marker", "error_log", "customer_id"]:
        assert column in AUDITS_TABLE_DDL, f"Column {column} not found in DDL"


def test_audit_queue_allows_duplicate_audits():
    """Test that there is no unique constraint on audit_id."""
    assert "UNIQUE" not in AUDIT_QUEUE_TABLE_DDL


def test_audit_queue_ddl_contains_indexes():
    """Test that DDL contains index definitions."""
    assert "idx_audit_queue_pending_created" in AUDIT_QUEUE_TABLE_DDL
    assert "idx_audit_queue_processing_started" in AUDIT_QUEUE_TABLE_DDL
    assert "idx_audit_queue_audit_id" in AUDIT_QUEUE_TABLE_DDL


def test_status_check_constraints():
    """Test that both status columns are constrained to their values."""
    assert "'pending', 'processing', 'completed', 'failed'" in AUDIT_QUEUE_TABLE_DDL
    assert "'pending', 'running', 'completed', 'failed'" in AUDITS_TABLE_DDL
