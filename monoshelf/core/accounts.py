"""
User accounts for the auth service: a sqlite users table, bcrypt password
hashes and signed bearer tokens.
"""
import logging
import re
import sqlite3
import uuid
from contextlib import closing
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import bcrypt
import jwt

from monoshelf.core.models import AuthUser
from monoshelf.utils.paths import ensure_dir_exists

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
MAX_DISPLAY_NAME = 80
MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_users_email ON users (email);
"""

class AccountError(Exception):
    """A request the account layer refuses, with the HTTP status to report."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

def _row_to_user(row: sqlite3.Row) -> AuthUser:
    return AuthUser(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        created_at=row["created_at"],
    )

def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]

class AccountRepository:
    def __init__(self, database_path: Path, secret: str, token_ttl: timedelta = timedelta(days=1),
                 bcrypt_rounds: int = 10):
        self.database_path = Path(database_path)
        self.secret = secret
        self.token_ttl = token_ttl
        self.bcrypt_rounds = bcrypt_rounds

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Creates the users table if it does not exist yet."""
        ensure_dir_exists(self.database_path.parent)
        with closing(self._connect()) as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    def register(self, display_name: Optional[str], email: Optional[str],
                 password: Optional[str]) -> AuthUser:
        if not email or not password or not display_name:
            raise AccountError(400, "displayName, email, and password are required")

        normalized_email = str(email).lower().strip()
        trimmed_name = str(display_name).strip()[:MAX_DISPLAY_NAME]

        if not EMAIL_PATTERN.match(normalized_email):
            raise AccountError(400, "Email format looks invalid")

        if len(str(password)) < MIN_PASSWORD_LENGTH:
            raise AccountError(400, "Password must be at least 8 characters long")

        password_hash = bcrypt.hashpw(
            _password_bytes(str(password)), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("ascii")
        user = AuthUser(
            id=str(uuid.uuid4()),
            email=normalized_email,
            display_name=trimmed_name,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        with closing(self._connect()) as conn:
            existing = conn.execute("SELECT id FROM users WHERE email = ?", (normalized_email,)).fetchone()
            if existing:
                raise AccountError(409, "Account already exists for that email")
            try:
                conn.execute(
                    """
                    INSERT INTO users (id, display_name, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user.id, user.display_name, user.email, password_hash, user.created_at),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                raise AccountError(409, "Account already exists for that email")

        logger.info("Registered account %s", user.id)
        return user

    def authenticate(self, email: Optional[str], password: Optional[str]) -> AuthUser:
        if not email or not password:
            raise AccountError(400, "email and password are required")

        normalized_email = str(email).lower().strip()
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT id, display_name, email, password_hash, created_at FROM users WHERE email = ?",
                (normalized_email,),
            ).fetchone()

        if row is None:
            raise AccountError(401, "Invalid credentials")

        if not bcrypt.checkpw(_password_bytes(str(password)), row["password_hash"].encode("ascii")):
            raise AccountError(401, "Invalid credentials")

        return _row_to_user(row)

    def get_user(self, user_id: str) -> AuthUser:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT id, display_name, email, created_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            raise AccountError(404, "User not found")
        return _row_to_user(row)

    def create_token(self, user: AuthUser) -> str:
        claims = {
            "sub": user.id,
            "email": user.email,
            "displayName": user.display_name,
            "exp": datetime.now(timezone.utc) + self.token_ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[TOKEN_ALGORITHM])
        except jwt.PyJWTError:
            raise AccountError(401, "Invalid or expired token")
