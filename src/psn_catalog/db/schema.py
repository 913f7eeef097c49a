"""Database schema definitions."""

import sqlite3
from pathlib import Path

from ..config import config


SCHEMA = """
-- parsing profiles group the rules a channel uses
CREATE TABLE IF NOT EXISTS parsing_profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS parsing_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id INTEGER NOT NULL REFERENCES parsing_profiles(id),
    field_type TEXT NOT NULL,
    pattern TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS channels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    parsing_profile_id INTEGER REFERENCES parsing_profiles(id),
    fetch_limit INTEGER,
    fetch_window_hours INTEGER,
    delay_after_scrape_ms INTEGER,
    last_scraped_at TEXT,
    last_scraped_message_id INTEGER,
    last_removal_check_at TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id INTEGER NOT NULL REFERENCES channels(id),
    external_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    price_ps4 TEXT,
    price_ps5 TEXT,
    region TEXT,
    capacity TEXT NOT NULL DEFAULT 'unknown',
    has_original_mail INTEGER NOT NULL DEFAULT 0,
    guarantee_minutes INTEGER,
    seller_info TEXT,
    additional_info TEXT,
    stock_status TEXT NOT NULL DEFAULT 'in_stock',
    is_deleted INTEGER NOT NULL DEFAULT 0,
    last_scraped_at TEXT,
    notes TEXT,
    raw_message_id INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    UNIQUE(channel_id, external_id)
);

-- one row per version of a listing; is_current marks the head
CREATE TABLE IF NOT EXISTS raw_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id INTEGER NOT NULL REFERENCES channels(id),
    external_message_id INTEGER NOT NULL,
    text TEXT NOT NULL,
    received_at TEXT NOT NULL,
    content_hash TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    is_current INTEGER NOT NULL DEFAULT 1,
    account_id INTEGER REFERENCES accounts(id),
    change_details JSON,
    previous_message_id INTEGER REFERENCES raw_messages(id),
    processed_at TEXT,
    processing_result TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    updated_by TEXT
);

CREATE TABLE IF NOT EXISTS games (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    -- trimmed, casefolded title
    title_key TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS account_games (
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    game_id INTEGER NOT NULL REFERENCES games(id),
    PRIMARY KEY (account_id, game_id)
);

-- append-only
CREATE TABLE IF NOT EXISTS account_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    field_name TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    changed_at TEXT NOT NULL,
    changed_by TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS admin_notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    priority TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    related_entity_type TEXT,
    related_entity_id INTEGER,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Create indexes for common queries
CREATE UNIQUE INDEX IF NOT EXISTS idx_raw_messages_head
    ON raw_messages(channel_id, external_message_id) WHERE is_current = 1;
CREATE INDEX IF NOT EXISTS idx_raw_messages_status ON raw_messages(status);
CREATE INDEX IF NOT EXISTS idx_accounts_channel ON accounts(channel_id);
CREATE INDEX IF NOT EXISTS idx_accounts_last_scraped ON accounts(last_scraped_at);
CREATE INDEX IF NOT EXISTS idx_history_account ON account_history(account_id);
CREATE INDEX IF NOT EXISTS idx_rules_profile ON parsing_rules(profile_id);
"""


def init_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Initialize the database with schema.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Connection to the initialized database.
    """
    if db_path is None:
        db_path = config.db_path
        config.ensure_dirs()

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    conn.commit()
    return conn
