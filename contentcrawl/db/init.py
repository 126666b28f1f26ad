"""Database initialization and schema management."""

import psycopg
import structlog
from psycopg_pool import ConnectionPool

logger = structlog.get_logger()

TABLES = (
    "sources",
    "contents",
    "content_index",
    "run_metrics",
    "source_metrics",
    "source_errors",
    "crawler_state",
)

SCHEMA_SQL = """
-- Sources table
CREATE TABLE IF NOT EXISTS sources (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL CHECK (type IN ('feed', 'api', 'scraper', 'webhook')),
    url TEXT NOT NULL,
    adapter_config JSONB NOT NULL DEFAULT '{}'::jsonb,
    content_types JSONB NOT NULL DEFAULT '[]'::jsonb,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    fetch_interval INTEGER NOT NULL DEFAULT 3600,
    min_interval INTEGER NOT NULL DEFAULT 1800,
    max_interval INTEGER NOT NULL DEFAULT 86400,
    last_fetch_at TIMESTAMPTZ,
    next_fetch_at TIMESTAMPTZ,
    quota_max_items INTEGER CHECK (quota_max_items IS NULL OR quota_max_items > 0),
    quota_max_size INTEGER CHECK (quota_max_size IS NULL OR quota_max_size > 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (min_interval > 0 AND min_interval <= fetch_interval AND fetch_interval <= max_interval)
);

-- Contents table
CREATE TABLE IF NOT EXISTS contents (
    id SERIAL PRIMARY KEY,
    type TEXT NOT NULL DEFAULT 'article',
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    summary TEXT NOT NULL DEFAULT '',
    source_url TEXT NOT NULL DEFAULT '',
    source_id INTEGER REFERENCES sources(id) ON DELETE CASCADE,
    fingerprint TEXT NOT NULL UNIQUE,
    quality_score INTEGER NOT NULL DEFAULT 0 CHECK (quality_score >= 0 AND quality_score <= 100),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processed', 'published', 'rejected')),
    publish_date TIMESTAMPTZ,
    extra JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Fingerprint index, written in the same transaction as contents
CREATE TABLE IF NOT EXISTS content_index (
    content_id INTEGER PRIMARY KEY REFERENCES contents(id) ON DELETE CASCADE,
    fingerprint TEXT NOT NULL UNIQUE,
    quality_score INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Run metrics table
CREATE TABLE IF NOT EXISTS run_metrics (
    id SERIAL PRIMARY KEY,
    sources_processed INTEGER NOT NULL DEFAULT 0,
    items_found INTEGER NOT NULL DEFAULT 0,
    items_processed INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    duration_seconds DOUBLE PRECISION NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Source metrics table
CREATE TABLE IF NOT EXISTS source_metrics (
    id SERIAL PRIMARY KEY,
    source_id INTEGER REFERENCES sources(id) ON DELETE CASCADE,
    items_found INTEGER NOT NULL DEFAULT 0,
    items_processed INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    duration_seconds DOUBLE PRECISION NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Source error log
CREATE TABLE IF NOT EXISTS source_errors (
    id SERIAL PRIMARY KEY,
    source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    error_type TEXT NOT NULL,
    message TEXT NOT NULL,
    context JSONB NOT NULL DEFAULT '{}'::jsonb,
    severity TEXT NOT NULL DEFAULT 'error',
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Crawler state table
CREATE TABLE IF NOT EXISTS crawler_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Create indexes
CREATE INDEX IF NOT EXISTS idx_sources_due ON sources(active, next_fetch_at);
CREATE INDEX IF NOT EXISTS idx_contents_source_id ON contents(source_id);
CREATE INDEX IF NOT EXISTS idx_contents_type_status ON contents(type, status);
CREATE INDEX IF NOT EXISTS idx_contents_created_at ON contents(created_at);
CREATE INDEX IF NOT EXISTS idx_source_metrics_created_at ON source_metrics(created_at);
CREATE INDEX IF NOT EXISTS idx_source_metrics_source_id ON source_metrics(source_id);
CREATE INDEX IF NOT EXISTS idx_run_metrics_created_at ON run_metrics(created_at);
CREATE INDEX IF NOT EXISTS idx_source_errors_source_id ON source_errors(source_id, created_at);

-- Update trigger function
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = CURRENT_TIMESTAMP;
    RETURN NEW;
END;
$$ language 'plpgsql';

-- Create update triggers
DROP TRIGGER IF EXISTS update_sources_updated_at ON sources;
CREATE TRIGGER update_sources_updated_at BEFORE UPDATE ON sources
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();

DROP TRIGGER IF EXISTS update_contents_updated_at ON contents;
CREATE TRIGGER update_contents_updated_at BEFORE UPDATE ON contents
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();

DROP TRIGGER IF EXISTS update_content_index_updated_at ON content_index;
CREATE TRIGGER update_content_index_updated_at BEFORE UPDATE ON content_index
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();

DROP TRIGGER IF EXISTS update_crawler_state_updated_at ON crawler_state;
CREATE TRIGGER update_crawler_state_updated_at BEFORE UPDATE ON crawler_state
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
"""


def validate_connection(pool: ConnectionPool) -> bool:
    """Validate database connection."""
    try:
        with pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                result = cur.fetchone()
                return result is not None and result["ok"] == 1
    except psycopg.Error as e:
        logger.error("database_connection_failed", error=str(e))
        return False


def init_database(pool: ConnectionPool) -> None:
    """Initialize database schema."""
    try:
        with pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("database_initialized", tables=list(TABLES))
    except psycopg.DatabaseError as e:
        logger.error("database_init_failed", error=str(e))
        raise


def drop_schema(pool: ConnectionPool) -> None:
    """Drop every crawler table. Used by the integration tests."""
    with pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DROP TABLE IF EXISTS " + ", ".join(reversed(TABLES)) + " CASCADE")
        conn.commit()
