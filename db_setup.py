import sqlite3

from settings import settings


def init_db(db_path: str = None):
    conn = get_db_connection(db_path)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)")

    conn.close()


def get_db_connection(db_path: str = None, timeout: float = None):
    # isolation_level=None: transactions are opened explicitly by the store
    conn = sqlite3.connect(
        db_path or settings.database_path,
        timeout=settings.database_timeout if timeout is None else timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def execute_query(conn, query, params=None):
    cursor = conn.cursor()

    if not params:
        cursor.execute(query)
    else:
        cursor.execute(query, params)

    if query.strip().upper().startswith('SELECT'):
        return [dict(row) for row in cursor.fetchall()]
    return cursor.lastrowid
