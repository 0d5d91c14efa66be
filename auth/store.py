"""
auth/store.py -- SQLAlchemy Core persistence for users, roles, and permissions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user,
_row_to_permission and _group_roles are the mappers. Service and route code never
touches SQL directly.

This is the authoritative source of role and permission assignments. The
authentication core only reads it (plus one insert at registration and the
credential replacement on password change); assignments are changed through
the management CLI.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Role and permission names are normalized before every write and lookup, so
  "admin" and "ADMIN" can never become two roles.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Permission, Role, User
from auth.validation import normalize_permission_name, normalize_role_name

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),  # upper-cased
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),  # lower-cased
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection, so they are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite,
    which would silently disable the ON DELETE CASCADE clauses above.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role, and Permission entities.

    Usage:
        store = UserStore("sqlite:///shelfguard.db")
        uid = store.create_user(User(email="a@x.com", first_name="A", last_name="B", password_hash=h))
        store.create_role("ADMIN")
        store.assign_roles(uid, ["admin"])
        store.find_roles(uid)
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///shelfguard.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a signal that a concurrent registration won.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    password_hash=user.password_hash,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email. Emails are stored lower-cased."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: int, password_hash: str) -> bool:
        """Replace the stored credential wholesale. Returns False if user_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_active(self, user_id: int, is_active: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if is_active else 0, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role / permission reads
    # ------------------------------------------------------------------

    def find_roles(self, user_id: int) -> list[Role]:
        """Return the user's roles, each carrying its full permission set.

        One query: user_roles -> roles LEFT JOIN role_permissions -> permissions.
        A role with no permissions still appears (with an empty set).
        """
        stmt = (
            _role_rows()
            .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return _group_roles(rows)

    def get_role(self, name: str) -> Role | None:
        stmt = _role_rows().where(_roles.c.name == normalize_role_name(name))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        roles = _group_roles(rows)
        return roles[0] if roles else None

    def list_roles(self) -> list[Role]:
        """Return every role with its permissions, ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(_role_rows().order_by(_roles.c.name)).fetchall()
        return _group_roles(rows)

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Role / permission administration (management CLI only)
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> Role:
        """Insert a role. Raises IntegrityError if the normalized name exists."""
        role_name = normalize_role_name(name)
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(name=role_name, description=description, created_at=_now_iso())
            )
            conn.commit()
        return Role(id=result.inserted_primary_key[0], name=role_name, description=description)

    def create_permission(self, name: str, description: str | None = None) -> Permission:
        """Insert a permission. Raises IntegrityError if the normalized name exists."""
        perm_name = normalize_permission_name(name)
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(name=perm_name, description=description, created_at=_now_iso())
            )
            conn.commit()
        return Permission(id=result.inserted_primary_key[0], name=perm_name, description=description)

    def grant_permission(self, role_name: str, permission_name: str) -> bool:
        """Attach a permission to a role. Returns False if either is unknown.

        Granting a permission the role already has is a no-op.
        """
        with self.engine.connect() as conn:
            role_id = conn.execute(
                select(_roles.c.id).where(_roles.c.name == normalize_role_name(role_name))
            ).scalar()
            perm_id = conn.execute(
                select(_permissions.c.id).where(_permissions.c.name == normalize_permission_name(permission_name))
            ).scalar()
            if role_id is None or perm_id is None:
                return False
            exists = conn.execute(
                select(_role_permissions.c.role_id).where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == perm_id)
                )
            ).first()
            if exists is None:
                conn.execute(_role_permissions.insert().values(role_id=role_id, permission_id=perm_id))
            conn.commit()
        return True

    def assign_roles(self, user_id: int, role_names: Iterable[str]) -> list[str]:
        """Give a user the named roles. Returns the names that do not exist.

        Already-held roles are left alone.
        """
        wanted = {normalize_role_name(n) for n in role_names}
        with self.engine.connect() as conn:
            rows = conn.execute(select(_roles.c.id, _roles.c.name).where(_roles.c.name.in_(wanted))).fetchall()
            held = set(conn.execute(select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id)).scalars())
            for row in rows:
                if row.id not in held:
                    conn.execute(_user_roles.insert().values(user_id=user_id, role_id=row.id))
            conn.commit()
        return sorted(wanted - {row.name for row in rows})

    def remove_roles(self, user_id: int, role_names: Iterable[str]) -> int:
        """Take the named roles away from a user. Returns the number removed."""
        wanted = {normalize_role_name(n) for n in role_names}
        with self.engine.connect() as conn:
            role_ids = select(_roles.c.id).where(_roles.c.name.in_(wanted))
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id.in_(role_ids)))
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def collect_grants(roles: Iterable[Role]) -> tuple[frozenset[str], frozenset[str]]:
    """Flatten roles into (role names, union of their permission names)."""
    role_names: set[str] = set()
    permission_names: set[str] = set()
    for role in roles:
        role_names.add(role.name)
        permission_names.update(p.name for p in role.permissions)
    return frozenset(role_names), frozenset(permission_names)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name, description=row.description)


def _group_roles(rows) -> list[Role]:
    """Fold (role, permission) join rows into Role objects, preserving row order."""
    grouped: dict[int, tuple] = {}
    perms: dict[int, set[Permission]] = {}
    for row in rows:
        if row.id not in grouped:
            grouped[row.id] = (row.name, row.description)
            perms[row.id] = set()
        if row.permission_id is not None:
            perms[row.id].add(
                Permission(id=row.permission_id, name=row.permission_name, description=row.permission_description)
            )
    return [
        Role(id=role_id, name=name, description=description, permissions=frozenset(perms[role_id]))
        for role_id, (name, description) in grouped.items()
    ]


def _role_rows():
    """SELECT one row per (role, permission) pair; permission columns NULL for empty roles."""
    return select(
        _roles.c.id,
        _roles.c.name,
        _roles.c.description,
        _permissions.c.id.label("permission_id"),
        _permissions.c.name.label("permission_name"),
        _permissions.c.description.label("permission_description"),
    ).select_from(
        _roles.outerjoin(_role_permissions, _role_permissions.c.role_id == _roles.c.id).outerjoin(
            _permissions, _permissions.c.id == _role_permissions.c.permission_id
        )
    )
