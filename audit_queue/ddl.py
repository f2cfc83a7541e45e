"""Database schema DDL for the audit queue.

The ``customers`` and ``audits`` tables are owned by the checkout flow; their
definitions here cover the columns the coordinator reads and writes and are
used for local development and integration tests.
"""

AUDITS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS customers (
  id          UUID PRIMARY KEY,
  email       TEXT NOT NULL UNIQUE,
  name        TEXT,
  created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS audits (
  id             UUID PRIMARY KEY,
  customer_id    UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
  url            TEXT NOT NULL,
  status         TEXT NOT NULL DEFAULT 'pending'
                 CHECK (status IN ('pending', 'running', 'completed', 'failed')),
  report_html    TEXT,
  email_marker   TEXT,
  error_log      TEXT,
  created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
  completed_at   TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_audits_status ON audits (status);
"""

AUDIT_QUEUE_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS audit_queue (
  id            UUID PRIMARY KEY,
  audit_id      UUID NOT NULL REFERENCES audits(id) ON DELETE CASCADE,
  status        TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
  created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
  started_at    TIMESTAMPTZ,
  completed_at  TIMESTAMPTZ,
  retry_count   INT NOT NULL DEFAULT 0,
  last_error    TEXT
);

-- No unique constraint on audit_id: duplicate entries are reconciled by the coordinator
CREATE INDEX IF NOT EXISTS idx_audit_queue_audit_id ON audit_queue (audit_id);

CREATE INDEX IF NOT EXISTS idx_audit_queue_pending_created
ON audit_queue (created_at)
WHERE status = 'pending';

-- Index for the stuck-item reclaimer
CREATE INDEX IF NOT EXISTS idx_audit_queue_processing_started
ON audit_queue (started_at)
WHERE status = 'processing';
"""

SCHEMA_DDL = AUDITS_TABLE_DDL + AUDIT_QUEUE_TABLE_DDL
