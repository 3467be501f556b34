"""SQLite schema for the qaflow store."""

SCHEMA = """
-- Projects: a version-controlled workspace on disk
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    path TEXT NOT NULL UNIQUE,
    created_at DATETIME NOT NULL
);

-- Tickets
CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL CHECK(length(title) <= 500),
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'backlog',
    priority TEXT CHECK(priority IS NULL OR priority IN ('high', 'medium', 'low')),
    position REAL NOT NULL DEFAULT 0,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    epic_id TEXT,
    branch_name TEXT,
    linked_commits TEXT NOT NULL DEFAULT '[]',
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    completed_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_tickets_project_status ON tickets(project_id, status);

-- Append-only audit comments
CREATE TABLE IF NOT EXISTS ticket_comments (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    author TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'comment',
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ticket_comments_ticket ON ticket_comments(ticket_id);

-- Review bookkeeping projection, at most one row per ticket
CREATE TABLE IF NOT EXISTS ticket_workflow_state (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL UNIQUE REFERENCES tickets(id) ON DELETE CASCADE,
    current_phase TEXT NOT NULL DEFAULT 'implementation',
    review_iteration INTEGER NOT NULL DEFAULT 0,
    findings_count INTEGER NOT NULL DEFAULT 0,
    findings_fixed INTEGER NOT NULL DEFAULT 0,
    demo_generated INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

-- Review findings
CREATE TABLE IF NOT EXISTS review_findings (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    iteration INTEGER NOT NULL DEFAULT 1,
    agent TEXT NOT NULL,
    severity TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT NOT NULL,
    file_path TEXT,
    line_number INTEGER,
    suggested_fix TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    fixed_at DATETIME,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_review_findings_ticket ON review_findings(ticket_id, status);

-- Demo scripts, at most one per ticket
CREATE TABLE IF NOT EXISTS demo_scripts (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL UNIQUE REFERENCES tickets(id) ON DELETE CASCADE,
    steps TEXT NOT NULL,
    generated_at DATETIME NOT NULL,
    completed_at DATETIME,
    feedback TEXT,
    passed INTEGER
);

-- Agent sessions
CREATE TABLE IF NOT EXISTS ralph_sessions (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    project_id TEXT,
    current_state TEXT NOT NULL DEFAULT 'idle',
    state_history TEXT NOT NULL DEFAULT '[]',
    outcome TEXT,
    error_message TEXT,
    started_at DATETIME NOT NULL,
    completed_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_ralph_sessions_ticket ON ralph_sessions(ticket_id, started_at);

-- Agent session events
CREATE TABLE IF NOT EXISTS ralph_events (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES ralph_sessions(id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    data TEXT,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ralph_events_session ON ralph_events(session_id, created_at);

-- Key/value store settings
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""
