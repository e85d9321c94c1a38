import sqlite3
import logging


logger = logging.getLogger(__name__)


def init_db(conn: sqlite3.Connection):
    """
    Creates the database tables on the given connection.
    """
    logger.debug("Setting up database tables...")
    cursor = conn.cursor()

    # One row per batch; the full batch state is kept as a JSON document
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS batches (
            id TEXT PRIMARY KEY,
            profile TEXT NOT NULL,
            status TEXT NOT NULL,
            state TEXT NOT NULL,
            updated_at INTEGER NOT NULL
        )
    """
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_batches_profile_status ON batches (profile, status)"
    )
    conn.commit()
    logger.info("Database setup complete.")


def setup_database(db_file: str) -> sqlite3.Connection:
    """
    Initializes the database connection and creates tables.
    """
    conn = sqlite3.connect(db_file, check_same_thread=False)
    init_db(conn)
    return conn


def upsert_batch_state(
    batch_id: str,
    profile: str,
    status: str,
    state_json: str,
    updated_at: int,
    conn: sqlite3.Connection,
):
    """
    Inserts or replaces the stored state of a batch.
    """
    logger.debug(f"Saving state of batch {batch_id} (status={status})")
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO batches (id, profile, status, state, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            profile = excluded.profile,
            status = excluded.status,
            state = excluded.state,
            updated_at = excluded.updated_at
    """,
        (batch_id, profile, status, state_json, updated_at),
    )
    conn.commit()


def get_batch_states(conn: sqlite3.Connection) -> list:
    """
    Retrieves (id, state_json) pairs for all stored batches, oldest update first.
    """
    cursor = conn.cursor()
    cursor.execute("SELECT id, state FROM batches ORDER BY updated_at ASC")
    rows = cursor.fetchall()
    logger.info(f"Retrieved {len(rows)} stored batches.")
    return rows
