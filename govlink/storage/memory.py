from __future__ import annotations

import copy
import json
import threading
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from govlink.logging import get_logger
from govlink.storage.errors import ConstraintViolation, UnknownFieldError
from govlink.storage.models import (
    DATETIME_FIELDS,
    AccountStatus,
    Principal,
    TokenKind,
    utcnow,
)

_IMMUTABLE_FIELDS = frozenset({"id", "partition", "created_at"})


class MemoryStore:
    """In-process principal store persisted as JSON under ``fs_root/state``.

    Every read returns a copy, so callers can only change stored principals
    through ``update_principal`` and ``consume_token_hash``.
    """

    def __init__(self, fs_root: str = "/tmp/govlink") -> None:
        self.logger = get_logger(__name__)
        # partition -> principal id -> principal
        self.principals: Dict[str, Dict[str, Principal]] = {}
        # RLock so helpers can re-enter while a mutation holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        if not self._load_state():
            self._persist_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "principals.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def verify_connection(self) -> None:
        with self._data_lock:
            self._state_path()

    # principals
    def create_principal(
        self,
        partition: str,
        email: str,
        *,
        password_hash: Optional[str] = None,
        password_algo: Optional[str] = None,
        role: str = "user",
        status: str = AccountStatus.ACTIVE.value,
        email_verified: bool = False,
        profile: Optional[Dict[str, Any]] = None,
    ) -> Principal:
        normalized = email.strip().lower()
        with self._data_lock:
            bucket = self.principals.setdefault(partition, {})
            if any(existing.email == normalized for existing in bucket.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            principal = Principal(
                id=str(uuid.uuid4()),
                partition=partition,
                email=normalized,
                password_hash=password_hash,
                password_algo=password_algo,
                role=role,
                status=AccountStatus(status).value,
                email_verified=email_verified,
                profile=dict(profile or {}),
            )
            bucket[principal.id] = principal
            self._persist_state()
            return copy.deepcopy(principal)

    def get_principal(self, partition: str, principal_id: str) -> Optional[Principal]:
        with self._data_lock:
            principal = self.principals.get(partition, {}).get(principal_id)
            return copy.deepcopy(principal) if principal else None

    def get_principal_by_email(self, partition: str, email: str) -> Optional[Principal]:
        normalized = email.strip().lower()
        with self._data_lock:
            principal = next(
                (p for p in self.principals.get(partition, {}).values() if p.email == normalized),
                None,
            )
            return copy.deepcopy(principal) if principal else None

    def list_principals(
        self, partition: str, *, status: Optional[str] = None, limit: int = 100
    ) -> List[Principal]:
        with self._data_lock:
            results = [
                p
                for p in self.principals.get(partition, {}).values()
                if status is None or p.status == status
            ]
            ordered = sorted(results, key=lambda p: p.created_at, reverse=True)[:limit]
            return [copy.deepcopy(p) for p in ordered]

    def update_principal(
        self, partition: str, principal_id: str, changes: Mapping[str, Any]
    ) -> Optional[Principal]:
        unknown = set(changes) - (Principal.field_names() - _IMMUTABLE_FIELDS)
        if unknown:
            raise UnknownFieldError(unknown)
        with self._data_lock:
            bucket = self.principals.get(partition, {})
            principal = bucket.get(principal_id)
            if not principal:
                return None
            updates = dict(changes)
            if "email" in updates:
                updates["email"] = str(updates["email"]).strip().lower()
                if any(
                    other.email == updates["email"] and other.id != principal_id
                    for other in bucket.values()
                ):
                    raise ConstraintViolation("email already exists", {"field": "email"})
            if "status" in updates:
                updates["status"] = AccountStatus(updates["status"]).value
            if "profile" in updates:
                merged = dict(principal.profile)
                merged.update(updates["profile"] or {})
                updates["profile"] = merged
            for name, value in updates.items():
                setattr(principal, name, value)
            principal.updated_at = utcnow()
            self._persist_state()
            return copy.deepcopy(principal)

    def consume_token_hash(
        self,
        partition: str,
        kind: TokenKind | str,
        token_hash: str,
        now: datetime,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Principal]:
        """Atomically redeem a single-use token.

        Finds the principal whose stored hash for ``kind`` matches and has not
        expired, clears the hash and expiry, applies ``changes`` and returns
        the updated principal. Returns None when nothing matches.
        """
        slot = TokenKind(kind).value
        hash_field = f"{slot}_token_hash"
        expiry_field = f"{slot}_expires_at"
        with self._data_lock:
            for principal in self.principals.get(partition, {}).values():
                if getattr(principal, hash_field) != token_hash:
                    continue
                expires_at = getattr(principal, expiry_field)
                if expires_at is None or expires_at <= now:
                    return None
                update: Dict[str, Any] = {hash_field: None, expiry_field: None}
                update.update(changes or {})
                return self.update_principal(partition, principal.id, update)
            return None

    def _persist_state(self) -> None:
        state = {
            "principals": [
                self._serialize_principal(p)
                for bucket in self.principals.values()
                for p in bucket.values()
            ]
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as exc:
            self.logger.warning("memory_store_state_corrupt", path=str(path), error=str(exc))
            return False
        self.principals = {}
        for raw in data.get("principals", []):
            principal = self._deserialize_principal(raw)
            self.principals.setdefault(principal.partition, {})[principal.id] = principal
        return True

    def _serialize_principal(self, principal: Principal) -> dict:
        data = asdict(principal)
        for name in DATETIME_FIELDS:
            if data.get(name) is not None:
                data[name] = self._serialize_datetime(data[name])
        return data

    def _deserialize_principal(self, data: dict) -> Principal:
        known = Principal.field_names()
        values = {k: v for k, v in data.items() if k in known}
        for name in DATETIME_FIELDS:
            if values.get(name):
                values[name] = self._deserialize_datetime(values[name])
        return Principal(**values)
