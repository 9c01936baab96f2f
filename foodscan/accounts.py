"""
Credential store and verifier.

Accounts live in SQLite next to the scan records. Passwords are stored only
as werkzeug salted hashes, and sessions are stateless HS256 JWTs signed with
the configured secret.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError
from werkzeug.security import check_password_hash, generate_password_hash

from foodscan.db import Database
from foodscan.errors import (
  DuplicateAccount,
  InvalidCredentials,
  InvalidInput,
  NotFound,
  TokenExpired,
  TokenInvalid,
)

if TYPE_CHECKING:
  from foodscan.scan_store import ScanStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NAME_MAX_LENGTH = 50


def _utcnow_iso() -> str:
  return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def normalise_email(email: Any) -> str:
  return str(email or "").strip().lower()


@dataclass
class Account:
  id: str
  email: str
  name: str
  password_hash: str
  created_at: str
  updated_at: str

  @classmethod
  def from_row(cls, row: sqlite3.Row) -> "Account":
    return cls(
      id=row["id"],
      email=row["email"],
      name=row["name"],
      password_hash=row["password_hash"],
      created_at=row["created_at"],
      updated_at=row["updated_at"],
    )

  def to_public_dict(self) -> Dict[str, Any]:
    """Return the client-facing view; the password hash is never included."""
    return {
      "id": self.id,
      "name": self.name,
      "email": self.email,
      "createdAt": self.created_at,
      "updatedAt": self.updated_at,
    }


class AccountStore:
  """Registers, verifies and deletes accounts and issues their session tokens."""

  def __init__(
    self,
    database: Database,
    *,
    jwt_secret: str,
    jwt_algorithm: str = "HS256",
    token_lifetime: timedelta = timedelta(days=7),
    password_min_length: int = 8,
  ) -> None:
    self.database = database
    self.jwt_secret = jwt_secret
    self.jwt_algorithm = jwt_algorithm
    self.token_lifetime = token_lifetime
    self.password_min_length = password_min_length
    # Compared against on unknown emails so both failure paths cost one hash check.
    self._dummy_hash = generate_password_hash(uuid.uuid4().hex)

  # -- validation ---------------------------------------------------------

  def _clean_name(self, name: Any) -> str:
    cleaned = str(name or "").strip()
    if not cleaned:
      raise InvalidInput("Name is required.")
    if len(cleaned) > NAME_MAX_LENGTH:
      raise InvalidInput(f"Name cannot exceed {NAME_MAX_LENGTH} characters.")
    return cleaned

  def _check_password_policy(self, password: Any) -> str:
    if not isinstance(password, str) or len(password) < self.password_min_length:
      raise InvalidInput(
        f"Password must be at least {self.password_min_length} characters long."
      )
    return password

  # -- reads --------------------------------------------------------------

  def _fetch_by_email(self, email: str) -> Optional[Account]:
    with self.database.transaction() as conn:
      row = conn.execute(
        "SELECT * FROM users WHERE email = ?",
        (normalise_email(email),),
      ).fetchone()
    return Account.from_row(row) if row else None

  def get(self, account_id: str) -> Account:
    with self.database.transaction() as conn:
      row = conn.execute("SELECT * FROM users WHERE id = ?", (account_id,)).fetchone()
    if row is None:
      raise NotFound("User not found.")
    return Account.from_row(row)

  # -- writes -------------------------------------------------------------

  def register(self, name: Any, email: Any, password: Any) -> Account:
    """Create a new account; the email is matched case-insensitively."""
    cleaned_name = self._clean_name(name)
    cleaned_email = normalise_email(email)
    if not EMAIL_PATTERN.match(cleaned_email):
      raise InvalidInput("A valid email address is required.")
    self._check_password_policy(password)

    now = _utcnow_iso()
    account = Account(
      id=uuid.uuid4().hex,
      email=cleaned_email,
      name=cleaned_name,
      password_hash=generate_password_hash(password),
      created_at=now,
      updated_at=now,
    )
    try:
      with self.database.transaction() as conn:
        conn.execute(
          """
          INSERT INTO users (id, email, name, password_hash, created_at, updated_at)
          VALUES (?, ?, ?, ?, ?, ?)
          """,
          (
            account.id,
            account.email,
            account.name,
            account.password_hash,
            account.created_at,
            account.updated_at,
          ),
        )
    except sqlite3.IntegrityError as exc:
      raise DuplicateAccount() from exc

    logger.info("Registered account %s", account.id)
    return account

  def verify(self, email: Any, password: Any) -> Account:
    """Return the account for valid credentials, else ``InvalidCredentials``."""
    account = self._fetch_by_email(normalise_email(email))
    candidate = password if isinstance(password, str) else ""
    if account is None:
      check_password_hash(self._dummy_hash, candidate)
      raise InvalidCredentials()
    if not check_password_hash(account.password_hash, candidate):
      raise InvalidCredentials()
    return account

  def update_profile(self, account_id: str, name: Any) -> Account:
    cleaned_name = self._clean_name(name)
    with self.database.transaction() as conn:
      cursor = conn.execute(
        "UPDATE users SET name = ?, updated_at = ? WHERE id = ?",
        (cleaned_name, _utcnow_iso(), account_id),
      )
      if cursor.rowcount == 0:
        raise NotFound("User not found.")
    return self.get(account_id)

  def delete_account(self, account_id: str, password: Any, scan_store: "ScanStore") -> List[str]:
    """
    Delete the account and every scan record it owns in one transaction.

    Returns the blob names of the deleted records; removing the blobs is the
    caller's job once the transaction has committed.
    """
    account = self.get(account_id)
    if not isinstance(password, str) or not check_password_hash(account.password_hash, password):
      raise InvalidCredentials("Invalid password.")

    with self.database.transaction(immediate=True) as conn:
      blob_names = scan_store.delete_all_for_owner(conn, account_id)
      conn.execute("DELETE FROM users WHERE id = ?", (account_id,))

    logger.info("Deleted account %s with %d scan(s)", account_id, len(blob_names))
    return blob_names

  # -- tokens -------------------------------------------------------------

  def issue_token(self, account: Account, expires_in: Optional[timedelta] = None) -> str:
    """Return a signed JWT for the provided account."""
    issued_at = datetime.now(timezone.utc)
    payload = {
      "sub": account.id,
      "email": account.email,
      "iat": issued_at,
      "exp": issued_at + (expires_in if expires_in is not None else self.token_lifetime),
    }
    return jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)

  def validate_token(self, token: str) -> str:
    """Return the account id carried by a valid, unexpired token."""
    try:
      claims = jwt.decode(
        token,
        self.jwt_secret,
        algorithms=[self.jwt_algorithm],
        options={"require": ["exp", "iat", "sub"]},
      )
    except ExpiredSignatureError as exc:
      raise TokenExpired() from exc
    except InvalidTokenError as exc:
      raise TokenInvalid() from exc

    account_id = claims.get("sub")
    if not isinstance(account_id, str) or not account_id:
      raise TokenInvalid("Token payload is malformed.")
    return account_id


__all__ = ["Account", "AccountStore", "normalise_email"]
