"""SQLite-backed persistence for organisations and users."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from passlib.context import CryptContext

from .config import resolve_database_path
from .models import CasaOrg, Role, User


class RecordInvalid(ValueError):
    """Raised when a record fails validation; ``messages`` holds the details."""

    def __init__(self, messages: List[str]) -> None:
        self.messages = list(messages)
        super().__init__("Validation failed: " + ", ".join(self.messages))


class RecordNotFound(LookupError):
    """Raised when a record does not exist (or is not visible to the caller)."""


_UNSET = object()

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Simple wrapper around SQLite for persisting organisations and users."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS casa_orgs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    casa_org_id INTEGER NOT NULL REFERENCES casa_orgs(id) ON DELETE CASCADE,
                    email TEXT NOT NULL UNIQUE,
                    display_name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    password_hash TEXT,
                    invitation_token_digest TEXT,
                    invitation_created_at TEXT,
                    invitation_sent_at TEXT,
                    invitation_accepted_at TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_casa_org_id ON users(casa_org_id);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_users_invitation_token
                    ON users(invitation_token_digest);
                """
            )

    # ------------------------------------------------------------------
    # Organisations
    # ------------------------------------------------------------------
    def create_org(self, name: str) -> CasaOrg:
        normalized = name.strip()
        if not normalized:
            raise ValueError("Organisation name must not be empty")

        created_at = _current_timestamp()
        with self._connection() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO casa_orgs (name, created_at) VALUES (?, ?)",
                    (normalized, _serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("An organisation with that name already exists") from exc
            org_id = cursor.lastrowid

        return CasaOrg(id=org_id, name=normalized, created_at=created_at)

    def get_org(self, org_id: int) -> Optional[CasaOrg]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM casa_orgs WHERE id = ?", (org_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_org(row)

    def get_org_by_name(self, name: str) -> Optional[CasaOrg]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM casa_orgs WHERE name = ?",
                (name.strip(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_org(row)

    def find_or_create_org(self, name: str) -> CasaOrg:
        existing = self.get_org_by_name(name)
        if existing is not None:
            return existing
        return self.create_org(name)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def _validate_user(
        self,
        conn: sqlite3.Connection,
        *,
        email: str,
        display_name: str,
        user_id: Optional[int] = None,
    ) -> List[str]:
        errors: List[str] = []
        if not email:
            errors.append("Email can't be blank")
        elif "@" not in email:
            errors.append("Email is invalid")
        else:
            row = conn.execute(
                "SELECT id FROM users WHERE email = ? AND id IS NOT ?",
                (email, user_id),
            ).fetchone()
            if row is not None:
                errors.append("Email has already been taken")
        if not display_name:
            errors.append("Display name can't be blank")
        return errors

    def create_user(
        self,
        casa_org_id: int,
        *,
        email: Optional[str],
        display_name: Optional[str],
        role: Role,
        password: Optional[str] = None,
        active: bool = True,
    ) -> User:
        """Create a new user, raising :class:`RecordInvalid` on validation failure."""

        normalized_email = _normalize_email(email)
        normalized_name = (display_name or "").strip()
        created_at = _current_timestamp()
        password_hash = _hash_password(password) if password else None

        with self._connection() as conn:
            errors = self._validate_user(conn, email=normalized_email, display_name=normalized_name)
            if errors:
                raise RecordInvalid(errors)
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        casa_org_id,
                        email,
                        display_name,
                        role,
                        active,
                        password_hash,
                        created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        casa_org_id,
                        normalized_email,
                        normalized_name,
                        role.value,
                        int(active),
                        password_hash,
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise RecordInvalid(["Email has already been taken"]) from exc
            user_id = cursor.lastrowid

        user = self.get_user(user_id)
        if user is None:
            raise RecordNotFound(f"User {user_id} not found")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_org_user(self, casa_org_id: int, user_id: int, *, role: Optional[Role] = None) -> User:
        """Return a user of the organisation, raising :class:`RecordNotFound` otherwise."""

        query = "SELECT * FROM users WHERE id = ? AND casa_org_id = ?"
        params: list = [user_id, casa_org_id]
        if role is not None:
            query += " AND role = ?"
            params.append(role.value)
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            raise RecordNotFound(f"User {user_id} not found")
        return self._row_to_user(row)

    def list_users(self, casa_org_id: Optional[int] = None, *, role: Optional[Role] = None) -> List[User]:
        clauses: List[str] = []
        params: list = []
        if casa_org_id is not None:
            clauses.append("casa_org_id = ?")
            params.append(casa_org_id)
        if role is not None:
            clauses.append("role = ?")
            params.append(role.value)
        query = "SELECT * FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY display_name COLLATE NOCASE, id"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self, *, role: Optional[Role] = None) -> int:
        with self._connection() as conn:
            if role is None:
                row = conn.execute("SELECT COUNT(*) FROM users").fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM users WHERE role = ?", (role.value,)).fetchone()
        return int(row[0])

    def update_user(self, user_id: int, *, email=_UNSET, display_name=_UNSET) -> User:
        """Update the email and/or display name, leaving omitted fields untouched."""

        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                raise RecordNotFound(f"User {user_id} not found")

            new_email = row["email"] if email is _UNSET else _normalize_email(email)
            new_name = row["display_name"] if display_name is _UNSET else (display_name or "").strip()

            errors = self._validate_user(conn, email=new_email, display_name=new_name, user_id=user_id)
            if errors:
                raise RecordInvalid(errors)
            try:
                conn.execute(
                    "UPDATE users SET email = ?, display_name = ? WHERE id = ?",
                    (new_email, new_name, user_id),
                )
            except sqlite3.IntegrityError as exc:
                raise RecordInvalid(["Email has already been taken"]) from exc

        return self._require_user(user_id)

    def set_user_active(self, user_id: int, active: bool) -> User:
        """Persist the active flag; the stored record must still be valid."""

        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                raise RecordNotFound(f"User {user_id} not found")
            errors = self._validate_user(
                conn,
                email=row["email"],
                display_name=row["display_name"],
                user_id=user_id,
            )
            if errors:
                raise RecordInvalid(errors)
            conn.execute("UPDATE users SET active = ? WHERE id = ?", (int(active), user_id))

        return self._require_user(user_id)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None or not row["active"]:
            return None
        stored_hash = row["password_hash"]
        if not stored_hash or not _verify_password(password, stored_hash):
            return None
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------
    def store_invitation(self, user_id: int, token_digest: str, *, issued_at: datetime) -> User:
        """Record a freshly issued invitation token for the user."""

        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET invitation_token_digest = ?,
                       invitation_created_at = ?,
                       invitation_sent_at = ?
                 WHERE id = ?
                """,
                (
                    token_digest,
                    _serialize_datetime(issued_at),
                    _serialize_datetime(issued_at),
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                raise RecordNotFound(f"User {user_id} not found")

        return self._require_user(user_id)

    def get_user_by_invitation_digest(self, token_digest: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE invitation_token_digest = ?",
                (token_digest,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def accept_invitation(self, token_digest: str, password: str) -> User:
        """Set the password for the invited user and consume the token."""

        if not password:
            raise ValueError("Password must not be empty")
        password_hash = _hash_password(password)
        accepted_at = _current_timestamp()

        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM users WHERE invitation_token_digest = ?",
                (token_digest,),
            ).fetchone()
            if row is None:
                raise RecordNotFound("Invitation token not found")
            conn.execute(
                """
                UPDATE users
                   SET password_hash = ?,
                       invitation_token_digest = NULL,
                       invitation_accepted_at = ?
                 WHERE id = ?
                """,
                (password_hash, _serialize_datetime(accepted_at), row["id"]),
            )
            user_id = row["id"]

        return self._require_user(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise RecordNotFound(f"User {user_id} not found")
        return user

    @staticmethod
    def _row_to_org(row: sqlite3.Row) -> CasaOrg:
        return CasaOrg(
            id=row["id"],
            name=row["name"],
            created_at=_parse_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            casa_org_id=row["casa_org_id"],
            email=row["email"],
            display_name=row["display_name"],
            role=Role(row["role"]),
            active=bool(row["active"]),
            created_at=_parse_datetime(row["created_at"]),
            invitation_created_at=_parse_datetime(row["invitation_created_at"]),
            invitation_sent_at=_parse_datetime(row["invitation_sent_at"]),
            invitation_accepted_at=_parse_datetime(row["invitation_accepted_at"]),
        )


__all__ = [
    "Database",
    "RecordInvalid",
    "RecordNotFound",
    "resolve_database_path",
]
