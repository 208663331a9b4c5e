"""
PostgreSQL schema for the snapshot store
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS option_chain (
    symbol        TEXT             NOT NULL,
    expiry_date   DATE             NOT NULL,
    expiry_type   TEXT             NOT NULL DEFAULT 'standard',
    option_chain  JSONB            NOT NULL,
    spot_price    NUMERIC(14, 4)   NOT NULL,
    gex_value     DOUBLE PRECISION,
    updated_at    TIMESTAMPTZ      NOT NULL,
    PRIMARY KEY (symbol, expiry_date)
);

CREATE TABLE IF NOT EXISTS option_expiry_dates (
    symbol        TEXT             PRIMARY KEY,
    expiry_dates  JSONB            NOT NULL,
    updated_at    TIMESTAMPTZ      NOT NULL
);

CREATE TABLE IF NOT EXISTS gex_history (
    id            UUID             PRIMARY KEY,
    symbol        TEXT             NOT NULL,
    expiry_date   DATE             NOT NULL,
    expiry_type   TEXT             NOT NULL DEFAULT 'standard',
    option_chain  JSONB            NOT NULL,
    gex_value     DOUBLE PRECISION NOT NULL,
    spot_price    NUMERIC(14, 4)   NOT NULL,
    recorded_at   TIMESTAMPTZ      NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_gex_history_symbol_recorded
    ON gex_history (symbol, recorded_at DESC);

CREATE INDEX IF NOT EXISTS idx_gex_history_recorded
    ON gex_history (recorded_at DESC);
"""

TABLES = ("option_chain", "option_expiry_dates", "gex_history")


def main():
    """Create the gexwatch tables in the configured database"""
    from gexwatch.config import load_config
    from gexwatch.database import ConnectionPool, PostgresSnapshotStore
    from gexwatch.utils import configure_logging

    config = load_config()
    configure_logging(config.log_level)

    db_pool = ConnectionPool(config.database)
    try:
        PostgresSnapshotStore.from_config(db_pool, config.collector).initialize_schema()
    finally:
        db_pool.close()


if __name__ == "__main__":
    main()
