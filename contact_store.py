"""Contact storage backends.

The resolver only talks to :class:`ContactStore`. Two implementations are
provided: :class:`SqliteContactStore` for the running service and
:class:`InMemoryContactStore` for tests and local experiments.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from db_models import Contact, LinkPrecedence
from db_setup import execute_query, get_db_connection, init_db
from exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


class ContactStore(ABC):
    """Ordered, queryable collection of contact records."""

    @abstractmethod
    def find_by_email_or_phone(
        self, email: Optional[str] = None, phone: Optional[str] = None
    ) -> List[Contact]:
        """Contacts matching ``email`` OR ``phone``, oldest first.

        A missing field is never matched against.
        """

    @abstractmethod
    def find_cluster(self, primary_id: int) -> List[Contact]:
        """The primary followed by every contact linked to it."""

    @abstractmethod
    def get(self, contact_id: int) -> Optional[Contact]:
        pass

    @abstractmethod
    def create(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: Optional[int] = None,
    ) -> Contact:
        pass

    @abstractmethod
    def demote_to_secondary(self, ids: Iterable[int], new_linked_id: int) -> None:
        """Mark every contact in ``ids`` secondary and link it to ``new_linked_id``."""

    @abstractmethod
    def atomic(self):
        """Context manager running the enclosed operations as one isolated unit."""


class SqliteContactStore(ContactStore):
    """SQLite backed store.

    Outside of :meth:`atomic` every operation opens its own connection.
    Inside it, all operations on the calling thread share a single
    connection holding a ``BEGIN IMMEDIATE`` transaction, so concurrent
    resolvers (threads or processes) are serialized by SQLite's write lock.
    """

    def __init__(self, db_path: str, timeout: Optional[float] = None):
        self.db_path = db_path
        self.timeout = timeout
        self._local = threading.local()
        try:
            init_db(db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not initialise contact database: {e}") from e

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            try:
                yield shared
            except sqlite3.Error as e:
                raise StoreUnavailable(f"Contact database error: {e}") from e
            return

        try:
            conn = get_db_connection(self.db_path, self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not open contact database: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Contact database error: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def atomic(self):
        if getattr(self._local, "conn", None) is not None:
            # Nested: join the outer transaction
            yield self
            return

        try:
            conn = get_db_connection(self.db_path, self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Could not open contact database: {e}") from e
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            conn.close()
            raise StoreUnavailable(f"Could not start transaction: {e}") from e

        self._local.conn = conn
        try:
            yield self
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.warning("Rolled back contact transaction", extra={"db_path": self.db_path})
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreUnavailable(f"Could not commit transaction: {e}") from e
        finally:
            self._local.conn = None
            conn.close()

    def find_by_email_or_phone(self, email=None, phone=None):
        clauses = []
        params = []
        if email:
            clauses.append("email = ?")
            params.append(email)
        if phone:
            clauses.append("phoneNumber = ?")
            params.append(phone)
        if not clauses:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({' OR '.join(clauses)})
            ORDER BY createdAt ASC, id ASC
        """
        with self._connection() as conn:
            rows = execute_query(conn, query, tuple(params))
        return [Contact(**row) for row in rows]

    def find_cluster(self, primary_id):
        with self._connection() as conn:
            primary = execute_query(
                conn,
                "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL",
                (primary_id,),
            )
            if not primary:
                return []
            secondaries = execute_query(conn, """
                SELECT * FROM Contact
                WHERE linkedId = ? AND deletedAt IS NULL
                ORDER BY createdAt ASC, id ASC
            """, (primary_id,))
        return [Contact(**row) for row in primary + secondaries]

    def get(self, contact_id):
        with self._connection() as conn:
            rows = execute_query(
                conn,
                "SELECT * FROM Contact WHERE id = ? AND deletedAt IS NULL",
                (contact_id,),
            )
        return Contact(**rows[0]) if rows else None

    def create(self, email=None, phone=None, precedence=LinkPrecedence.PRIMARY, linked_id=None):
        now = datetime.now().isoformat(timespec="microseconds")
        precedence = LinkPrecedence(precedence)
        with self._connection() as conn:
            contact_id = execute_query(conn, """
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (phone, email, linked_id, precedence.value, now, now))
        return Contact(
            id=contact_id,
            email=email,
            phoneNumber=phone,
            linkedId=linked_id,
            linkPrecedence=precedence,
            createdAt=now,
            updatedAt=now,
        )

    def demote_to_secondary(self, ids, new_linked_id):
        ids = list(ids)
        if not ids:
            return
        now = datetime.now().isoformat(timespec="microseconds")
        placeholders = ", ".join("?" for _ in ids)
        with self._connection() as conn:
            execute_query(conn, f"""
                UPDATE Contact
                SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
                WHERE id IN ({placeholders})
            """, (new_linked_id, now, *ids))


class InMemoryContactStore(ContactStore):
    """Process-local store. ``clock`` supplies ``createdAt`` for new contacts."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self._contacts: dict = {}
        self._next_id = 1
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = (dict(self._contacts), self._next_id)
            try:
                yield self
            except BaseException:
                self._contacts, self._next_id = snapshot
                raise

    def _live(self) -> List[Contact]:
        contacts = [c for c in self._contacts.values() if c.deletedAt is None]
        return sorted(contacts, key=Contact.seniority)

    def find_by_email_or_phone(self, email=None, phone=None):
        with self._lock:
            return [
                c for c in self._live()
                if (email and c.email == email) or (phone and c.phoneNumber == phone)
            ]

    def find_cluster(self, primary_id):
        with self._lock:
            primary = self.get(primary_id)
            if primary is None:
                return []
            return [primary] + [c for c in self._live() if c.linkedId == primary_id]

    def get(self, contact_id):
        with self._lock:
            contact = self._contacts.get(contact_id)
            if contact is None or contact.deletedAt is not None:
                return None
            return contact

    def create(self, email=None, phone=None, precedence=LinkPrecedence.PRIMARY, linked_id=None):
        with self._lock:
            now = self.clock()
            contact = Contact(
                id=self._next_id,
                email=email,
                phoneNumber=phone,
                linkedId=linked_id,
                linkPrecedence=LinkPrecedence(precedence),
                createdAt=now,
                updatedAt=now,
            )
            self._contacts[contact.id] = contact
            self._next_id += 1
            return contact

    def demote_to_secondary(self, ids, new_linked_id):
        with self._lock:
            now = self.clock()
            for contact_id in ids:
                contact = self._contacts[contact_id]
                self._contacts[contact_id] = contact.model_copy(update={
                    "linkPrecedence": LinkPrecedence.SECONDARY,
                    "linkedId": new_linked_id,
                    "updatedAt": now,
                })

    def soft_delete(self, contact_id: int) -> None:
        with self._lock:
            contact = self._contacts[contact_id]
            self._contacts[contact_id] = contact.model_copy(update={"deletedAt": self.clock()})
