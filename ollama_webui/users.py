from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


logger = logging.getLogger("webui.users")

SESSION_COOKIE = "webui_session"
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{3,32}$")
ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


class UserError(ValueError):
    """Base class for account errors that are safe to show to the caller."""


class UserExists(UserError):
    pass


class InvalidCredentials(UserError):
    pass


class InvalidUserData(UserError):
    pass


class UserStoreUnavailable(UserError):
    """The accounts file exists but cannot be read or parsed."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Unparseable hash in the file.
        return False


class UserStore:
    """
    User accounts kept in a single JSON file.

    Every change is a read-modify-write of the whole file, replaced atomically
    with ``os.replace``. There is no locking between processes.
    """

    def __init__(self, path: Path, min_password_length: int = 6) -> None:
        self.path = path
        self.min_password_length = min_password_length
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("Could not read user store %s: %s", self.path, exc)
            # Writes go through here as well, so the damaged file is left untouched.
            raise UserStoreUnavailable("Accounts are temporarily unavailable.") from exc
        users = data.get("users") if isinstance(data, dict) else None
        return users if isinstance(users, dict) else {}

    def _write(self, users: Dict[str, Dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump({"users": users}, handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp_path, self.path)

    def _check_password_rules(self, password: str) -> None:
        if not isinstance(password, str) or len(password) < self.min_password_length:
            raise InvalidUserData(
                f"Password must be at least {self.min_password_length} characters."
            )

    def exists(self, user_id: str) -> bool:
        return user_id in self._load()

    def create(self, user_id: str, password: str) -> None:
        if not isinstance(user_id, str) or not USER_ID_PATTERN.match(user_id):
            raise InvalidUserData(
                "User id must be 3-32 letters, digits, dots, underscores or hyphens."
            )
        self._check_password_rules(password)
        users = self._load()
        if user_id in users:
            raise UserExists("User id is already taken.")
        users[user_id] = {
            "password_hash": hash_password(password),
            "created_at": utcnow(),
        }
        self._write(users)
        logger.info("Created user %s", user_id)

    def verify(self, user_id: str, password: str) -> bool:
        record = self._load().get(user_id)
        if not record or not isinstance(password, str):
            return False
        return check_password(password, record.get("password_hash", ""))

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        if not self.verify(user_id, current_password):
            raise InvalidCredentials("Current password is incorrect.")
        self._check_password_rules(new_password)
        users = self._load()
        record = users[user_id]
        record["password_hash"] = hash_password(new_password)
        record["updated_at"] = utcnow()
        self._write(users)
        logger.info("Changed password for %s", user_id)

    def delete(self, user_id: str, password: str) -> None:
        if not self.verify(user_id, password):
            raise InvalidCredentials("Password is incorrect.")
        users = self._load()
        users.pop(user_id, None)
        self._write(users)
        logger.info("Deleted user %s", user_id)


class SessionSigner:
    """
    Signed, time-limited session cookies carrying only the user id.
    """

    def __init__(self, secret: str, max_age: int) -> None:
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret, salt="webui-session")

    def issue(self, user_id: str) -> str:
        return self._serializer.dumps({"user_id": user_id})

    def read(self, cookie_value: Optional[str]) -> Optional[str]:
        if not cookie_value:
            return None
        try:
            data = self._serializer.loads(cookie_value, max_age=self.max_age)
        except (BadSignature, SignatureExpired):
            return None
        if not isinstance(data, dict):
            return None
        user_id = data.get("user_id")
        return user_id if isinstance(user_id, str) else None
