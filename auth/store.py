"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository and the
default UserAdapter implementation; _row_to_user is the mapper. The engine
and the routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use tokens are consumed with one conditional UPDATE whose WHERE
  clause includes the token value (compare-and-swap). Two concurrent
  requests carrying the same token cannot both succeed: the second UPDATE
  matches zero rows and the method returns None.

DB path: auth/accountflow_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import UserExistsError
from auth.models import ResetTicket, User
from core.config import get_settings, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text),  # NULL for invited placeholders
    Column("reset_token", String(36), unique=True),
    Column("reset_expires", String(32)),
    Column("invite_token", String(36), unique=True),
    Column("invite_accepted", Integer, nullable=False, server_default="1"),
    Column("email_confirm_token", String(36), unique=True),
    Column("email_confirmed", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Columns update_user() accepts. Token and password columns have dedicated
# methods so every write to them goes through the single-use rules.
_UPDATABLE_COLUMNS: frozenset[str] = frozenset({"name", "email", "email_confirmed", "invite_accepted"})
_BOOL_COLUMNS: frozenset[str] = frozenset({"email_confirmed", "invite_accepted"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user_by_signup(User(email="kees@example.com", name="Kees", hashed_password=h))
        store.find_user_by_email("kees@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_user_by_email(self, email: str) -> User | None:
        return self._find_one(_users.c.email == email)

    def find_user_by_id(self, user_id: int) -> User | None:
        return self._find_one(_users.c.id == user_id)

    def find_user_by_reset_token(self, reset_token: str) -> User | None:
        return self._find_one(_users.c.reset_token == reset_token)

    def find_user_by_invite_token(self, invite_token: str) -> User | None:
        return self._find_one(_users.c.invite_token == invite_token)

    def find_user_by_email_confirm_token(self, email_confirm_token: str) -> User | None:
        return self._find_one(_users.c.email_confirm_token == email_confirm_token)

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_user_by_signup(self, user: User) -> User:
        """Insert a self-registered user and return the stored record.

        Raises UserExistsError if the email is already taken. The engine checks
        first, so this only fires when a concurrent request won the insert.
        """
        return self._insert(user)

    def create_user_by_invite(self, user: User) -> User:
        """Insert an invited placeholder (no password) carrying its invite token.

        Raises UserExistsError if the email is already taken.
        """
        return self._insert(user)

    # ------------------------------------------------------------------
    # Plain updates
    # ------------------------------------------------------------------

    def update_user(self, user_id: int, **fields) -> User | None:
        """Update profile columns and return the fresh record (None if missing).

        Unknown or protected keys raise ValueError rather than being silently
        ignored -- passwords and tokens have dedicated methods.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)!r}")
        values = {k: (1 if v else 0) if k in _BOOL_COLUMNS else v for k, v in fields.items()}
        return self._update_where(_users.c.id == user_id, user_id, values)

    def update_user_password(self, user_id: int, hashed_password: str) -> User | None:
        return self._update_where(_users.c.id == user_id, user_id, {"hashed_password": hashed_password})

    def update_user_reset_token(self, user_id: int, reset_token: str, reset_expires: str) -> ResetTicket:
        """Store a new reset token and its expiry together, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_token=reset_token, reset_expires=reset_expires)
            )
            conn.commit()
        return ResetTicket(reset_token=reset_token, reset_expires=reset_expires)

    def update_user_invite_token(self, user_id: int, invite_token: str) -> User | None:
        return self._update_where(_users.c.id == user_id, user_id, {"invite_token": invite_token})

    def update_user_email_confirm_token(self, user_id: int, email_confirm_token: str) -> User | None:
        return self._update_where(_users.c.id == user_id, user_id, {"email_confirm_token": email_confirm_token})

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Token consumption -- compare-and-swap on the token column
    # ------------------------------------------------------------------

    def consume_reset_token(self, user_id: int, reset_token: str, hashed_password: str) -> User | None:
        """Set the new password and clear reset_token + reset_expires in one UPDATE.

        Only rows that already hold a password match: an invited placeholder
        becomes active through consume_invite_token and nothing else.
        """
        return self._update_where(
            (_users.c.id == user_id) & (_users.c.reset_token == reset_token) & _users.c.hashed_password.isnot(None),
            user_id,
            {"hashed_password": hashed_password, "reset_token": None, "reset_expires": None},
        )

    def consume_invite_token(self, user_id: int, invite_token: str, name: str, hashed_password: str) -> User | None:
        """Activate an invited account: set name and password, clear the invite token.

        Following the invite link proves control of the mailbox, so the email
        is marked confirmed as well.
        """
        return self._update_where(
            (_users.c.id == user_id) & (_users.c.invite_token == invite_token),
            user_id,
            {
                "name": name,
                "hashed_password": hashed_password,
                "invite_token": None,
                "invite_accepted": 1,
                "email_confirmed": 1,
            },
        )

    def consume_email_confirm_token(self, user_id: int, email_confirm_token: str) -> User | None:
        return self._update_where(
            (_users.c.id == user_id) & (_users.c.email_confirm_token == email_confirm_token),
            user_id,
            {"email_confirm_token": None, "email_confirmed": 1},
        )

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
        return _row_to_user(row) if row is not None else None

    def _insert(self, user: User) -> User:
        try:
            return self._insert_row(user)
        except IntegrityError:
            # The unique email index is the only constraint a racing insert can hit.
            if self.find_user_by_email(user.email) is not None:
                raise UserExistsError() from None
            raise

    def _insert_row(self, user: User) -> User:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    name=user.name,
                    hashed_password=user.hashed_password,
                    reset_token=user.reset_token,
                    reset_expires=user.reset_expires,
                    invite_token=user.invite_token,
                    invite_accepted=1 if user.invite_accepted else 0,
                    email_confirm_token=user.email_confirm_token,
                    email_confirmed=1 if user.email_confirmed else 0,
                    created_at=now_iso(),
                )
            )
            user_id = result.inserted_primary_key[0]
            created = _fetch(conn, user_id)
            conn.commit()
        return created

    def _update_where(self, condition, user_id: int, values: dict) -> User | None:
        """Run one conditional UPDATE and re-read the row in the same transaction.

        Returns None when the condition matched nothing (missing user, or a
        token that was already consumed).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(condition).values(**values))
            if result.rowcount == 0:
                conn.rollback()
                return None
            updated = _fetch(conn, user_id)
            conn.commit()
        return updated


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _fetch(conn: Connection, user_id: int) -> User | None:
    row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
    return _row_to_user(row) if row is not None else None


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        reset_token=row.reset_token,
        reset_expires=row.reset_expires,
        invite_token=row.invite_token,
        invite_accepted=bool(row.invite_accepted),
        email_confirm_token=row.email_confirm_token,
        email_confirmed=bool(row.email_confirmed),
        created_at=row.created_at,
        last_login=row.last_login,
    )
