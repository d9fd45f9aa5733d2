"""
Database storage layer for OTP Vault.
Uses SQLite; sensitive credential fields arrive here already encrypted.
"""
import sqlite3
import json
import logging
from datetime import datetime
from typing import List, Optional, Dict, Any

# Configure logging
logger = logging.getLogger(__name__)

RECORD_COLUMNS = (
    'id', 'account_name', 'issuer', 'prefix', 'postfix',
    'encrypted', 'payload', 'salt', 'iv', 'kdf_params'
)


class Storage:
    """SQLite storage handler for OTP Vault."""

    def __init__(self, db_path: str = "otpvault.db"):
        """
        Initialize SQLite database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.conn = None

    def connect(self) -> sqlite3.Connection:
        """Establish database connection."""
        if self.conn is None:
            self.conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None
            )
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def init_db(self):
        """Initialize database tables."""
        conn = self.connect()
        cursor = conn.cursor()

        # Credentials table; payload holds ciphertext when encrypted = 1,
        # otherwise the cleartext JSON of the sensitive fields.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS credentials (
                id TEXT PRIMARY KEY,
                account_name TEXT NOT NULL,
                issuer TEXT,
                prefix TEXT DEFAULT '',
                postfix TEXT DEFAULT '',
                encrypted BOOLEAN NOT NULL DEFAULT 0,
                payload TEXT NOT NULL,
                salt TEXT,
                iv TEXT,
                kdf_params TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Vault settings (password verifier and similar)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_credentials_account ON credentials(account_name)")

        logger.info("Database initialized successfully")

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        record['encrypted'] = bool(record['encrypted'])
        if record['kdf_params']:
            try:
                record['kdf_params'] = json.loads(record['kdf_params'])
            except ValueError:
                # Left as text; the repository treats the record as undecryptable.
                logger.warning("Credential %s has malformed kdf_params", record['id'])
        else:
            record['kdf_params'] = None
        for column in ('created_at', 'updated_at'):
            value = record.get(column)
            record[column] = datetime.fromisoformat(value) if value else None
        return record

    def _upsert(self, cursor: sqlite3.Cursor, record: Dict[str, Any]):
        values = [record.get(column) for column in RECORD_COLUMNS]
        values[RECORD_COLUMNS.index('encrypted')] = bool(record.get('encrypted'))
        kdf_params = record.get('kdf_params')
        values[RECORD_COLUMNS.index('kdf_params')] = json.dumps(kdf_params) if kdf_params else None

        cursor.execute(
            """INSERT INTO credentials
            (id, account_name, issuer, prefix, postfix, encrypted, payload, salt, iv, kdf_params)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                account_name = excluded.account_name,
                issuer = excluded.issuer,
                prefix = excluded.prefix,
                postfix = excluded.postfix,
                encrypted = excluded.encrypted,
                payload = excluded.payload,
                salt = excluded.salt,
                iv = excluded.iv,
                kdf_params = excluded.kdf_params,
                updated_at = CURRENT_TIMESTAMP""",
            values
        )

    def upsert_record(self, record: Dict[str, Any]):
        """
        Insert a credential record or replace the stored version of it.

        Args:
            record: Mapping with the RECORD_COLUMNS keys
        """
        conn = self.connect()
        self._upsert(conn.cursor(), record)
        logger.info("Stored credential %s", record['id'])

    def upsert_records(self, records: List[Dict[str, Any]], replace: bool = False,
                       settings: Optional[Dict[str, str]] = None):
        """
        Store several records in one transaction.

        Args:
            records: Records to insert or update
            replace: Delete every other record first
            settings: Settings to write in the same transaction
        """
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("BEGIN")
        try:
            if replace:
                cursor.execute("DELETE FROM credentials")
            for record in records:
                self._upsert(cursor, record)
            for key, value in (settings or {}).items():
                self._set_setting(cursor, key, value)
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise

        logger.info("Stored %d credentials (replace=%s)", len(records), replace)
        for key in settings or {}:
            logger.info("Updated setting %s", key)

    def get_record(self, credential_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a credential record by ID.

        Returns:
            Record dict or None if not found
        """
        cursor = self.connect().cursor()
        cursor.execute("SELECT * FROM credentials WHERE id = ?", (credential_id,))
        row = cursor.fetchone()
        return self._row_to_dict(row) if row else None

    def list_records(self, search_query: str = None) -> List[Dict[str, Any]]:
        """
        List credential records in insertion order.

        Args:
            search_query: Search in account name and issuer
        """
        query = "SELECT * FROM credentials"
        params = []

        if search_query:
            query += " WHERE account_name LIKE ? OR issuer LIKE ?"
            params.extend([f"%{search_query}%", f"%{search_query}%"])

        query += " ORDER BY created_at, rowid"

        cursor = self.connect().cursor()
        cursor.execute(query, params)
        return [self._row_to_dict(row) for row in cursor.fetchall()]

    def delete_record(self, credential_id: str) -> bool:
        cursor = self.connect().cursor()
        cursor.execute("DELETE FROM credentials WHERE id = ?", (credential_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted credential %s", credential_id)
        return deleted

    def clear_records(self):
        cursor = self.connect().cursor()
        cursor.execute("DELETE FROM credentials")
        logger.info("Cleared all credentials")

    def get_setting(self, key: str) -> Optional[str]:
        cursor = self.connect().cursor()
        cursor.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    @staticmethod
    def _set_setting(cursor: sqlite3.Cursor, key: str, value: str):
        cursor.execute(
            """INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP""",
            (key, value)
        )

    def set_setting(self, key: str, value: str):
        self._set_setting(self.connect().cursor(), key, value)
        logger.info("Updated setting %s", key)
