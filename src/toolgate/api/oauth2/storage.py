# Credential store: clients, codes, tokens, API keys, session scopes.
# Created: 2026-10-19
#
# The store is a dumb keyed record holder; all policy lives in the
# authorization server, the authenticator and the session manager.
# InMemoryCredentialStore keeps everything in dicts under one lock (no awaits
# inside critical sections, so it is safe from any thread or event loop).
# FileCredentialStore snapshots the same state to JSON after every mutation so
# records survive restarts; a mutation whose snapshot cannot be written is
# rolled back in memory before the error propagates.

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from toolgate.api.oauth2.models import (
    APIKeyRecord,
    AuthorizationCode,
    OAuthClient,
    OAuthToken,
    SessionScope,
    utcnow,
)

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """The backing store could not be read or written."""


class CredentialStore(Protocol):
    """Interface the auth core needs from persistent storage."""

    # Clients
    async def create_client(self, client: OAuthClient) -> None: ...
    async def get_client(self, client_id: str) -> OAuthClient | None: ...

    # Authorization codes
    async def create_code(self, code: AuthorizationCode) -> None: ...
    async def get_code_by_hash(self, code_hash: str) -> AuthorizationCode | None: ...
    async def consume_code(self, code_hash: str) -> bool:
        """Mark a code used. False if it was missing or already used."""
        ...

    # Tokens
    async def create_token(self, token: OAuthToken) -> None: ...
    async def get_token_by_access_hash(self, access_hash: str) -> OAuthToken | None: ...
    async def get_token_by_refresh_hash(self, refresh_hash: str) -> OAuthToken | None: ...
    async def revoke_token(self, token_id: str) -> bool: ...

    # API keys
    async def create_api_key(self, record: APIKeyRecord) -> None: ...
    async def get_api_key(self, key_id: str) -> APIKeyRecord | None: ...
    async def get_api_key_by_hash(self, key_hash: str) -> APIKeyRecord | None: ...
    async def list_api_keys(self, user_id: str | None = None) -> list[APIKeyRecord]: ...
    async def revoke_api_key(self, key_id: str) -> APIKeyRecord | None:
        """Set revoked_at; returns the updated record, or None if absent/already revoked."""
        ...
    async def touch_api_key(self, key_id: str, when: datetime) -> None: ...

    # Session scopes
    async def upsert_session_scope(self, scope: SessionScope) -> None: ...
    async def get_session_scope(self, session_id: str) -> SessionScope | None: ...
    async def get_latest_session_scope_for_user(self, user_id: str) -> SessionScope | None: ...
    async def delete_session_scope(self, session_id: str) -> bool: ...

    async def purge_expired(self, now: datetime | None = None) -> int: ...


class InMemoryCredentialStore:
    """Dict-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}  # keyed by code_hash
        self._tokens: dict[str, OAuthToken] = {}  # keyed by token id
        self._access_index: dict[str, str] = {}  # access hash -> token id
        self._refresh_index: dict[str, str] = {}  # refresh hash -> token id
        self._api_keys: dict[str, APIKeyRecord] = {}  # keyed by key id
        self._key_hash_index: dict[str, str] = {}  # key hash -> key id
        self._session_scopes: dict[str, SessionScope] = {}

    def _checkpoint(self) -> Any:
        """Called (under the lock) before a mutation; the result goes to _commit()."""
        return None

    def _commit(self, checkpoint: Any) -> None:
        """Hook called (under the lock) after every mutation."""

    # -- clients ----------------------------------------------------------

    async def create_client(self, client: OAuthClient) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            self._clients[client.client_id] = replace(client)
            self._commit(checkpoint)

    async def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            client = self._clients.get(client_id)
            return replace(client) if client else None

    # -- codes ------------------------------------------------------------

    async def create_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            self._codes[code.code_hash] = replace(code)
            self._commit(checkpoint)

    async def get_code_by_hash(self, code_hash: str) -> AuthorizationCode | None:
        with self._lock:
            code = self._codes.get(code_hash)
            return replace(code) if code else None

    async def consume_code(self, code_hash: str) -> bool:
        with self._lock:
            checkpoint = self._checkpoint()
            code = self._codes.get(code_hash)
            if code is None or code.used:
                return False
            code.used = True
            self._commit(checkpoint)
            return True

    # -- tokens -----------------------------------------------------------

    async def create_token(self, token: OAuthToken) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            self._tokens[token.id] = replace(token)
            self._access_index[token.access_token_hash] = token.id
            if token.refresh_token_hash:
                self._refresh_index[token.refresh_token_hash] = token.id
            self._commit(checkpoint)

    async def get_token_by_access_hash(self, access_hash: str) -> OAuthToken | None:
        with self._lock:
            token_id = self._access_index.get(access_hash)
            token = self._tokens.get(token_id) if token_id else None
            return replace(token) if token else None

    async def get_token_by_refresh_hash(self, refresh_hash: str) -> OAuthToken | None:
        with self._lock:
            token_id = self._refresh_index.get(refresh_hash)
            token = self._tokens.get(token_id) if token_id else None
            return replace(token) if token else None

    async def revoke_token(self, token_id: str) -> bool:
        with self._lock:
            checkpoint = self._checkpoint()
            token = self._tokens.get(token_id)
            if token is None or token.revoked:
                return False
            token.revoked = True
            self._commit(checkpoint)
            return True

    # -- API keys ---------------------------------------------------------

    async def create_api_key(self, record: APIKeyRecord) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            self._api_keys[record.id] = replace(record, scopes=list(record.scopes))
            self._key_hash_index[record.key_hash] = record.id
            self._commit(checkpoint)

    async def get_api_key(self, key_id: str) -> APIKeyRecord | None:
        with self._lock:
            record = self._api_keys.get(key_id)
            return replace(record) if record else None

    async def get_api_key_by_hash(self, key_hash: str) -> APIKeyRecord | None:
        with self._lock:
            key_id = self._key_hash_index.get(key_hash)
            record = self._api_keys.get(key_id) if key_id else None
            return replace(record) if record else None

    async def list_api_keys(self, user_id: str | None = None) -> list[APIKeyRecord]:
        with self._lock:
            return [
                replace(r)
                for r in self._api_keys.values()
                if user_id is None or r.user_id == user_id
            ]

    async def revoke_api_key(self, key_id: str) -> APIKeyRecord | None:
        with self._lock:
            checkpoint = self._checkpoint()
            record = self._api_keys.get(key_id)
            if record is None or record.revoked_at is not None:
                return None
            record.revoked_at = utcnow()
            self._commit(checkpoint)
            return replace(record)

    async def touch_api_key(self, key_id: str, when: datetime) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            record = self._api_keys.get(key_id)
            if record is not None:
                record.last_used_at = when
                self._commit(checkpoint)

    # -- session scopes ---------------------------------------------------

    async def upsert_session_scope(self, scope: SessionScope) -> None:
        with self._lock:
            checkpoint = self._checkpoint()
            self._session_scopes[scope.session_id] = replace(scope, updated_at=utcnow())
            self._commit(checkpoint)

    async def get_session_scope(self, session_id: str) -> SessionScope | None:
        with self._lock:
            scope = self._session_scopes.get(session_id)
            return replace(scope) if scope else None

    async def get_latest_session_scope_for_user(self, user_id: str) -> SessionScope | None:
        with self._lock:
            candidates = [
                s
                for s in self._session_scopes.values()
                if s.user_id == user_id and s.selected_tenant_id
            ]
            if not candidates:
                return None
            # Equal timestamps: the later-inserted row wins.
            return replace(max(reversed(candidates), key=lambda s: s.updated_at))

    async def delete_session_scope(self, session_id: str) -> bool:
        with self._lock:
            checkpoint = self._checkpoint()
            removed = self._session_scopes.pop(session_id, None) is not None
            if removed:
                self._commit(checkpoint)
            return removed

    # -- maintenance ------------------------------------------------------

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Drop used/expired codes and tokens that can no longer be refreshed."""
        now = now or utcnow()
        with self._lock:
            checkpoint = self._checkpoint()
            dead_codes = [h for h, c in self._codes.items() if c.used or c.is_expired(now)]
            for h in dead_codes:
                del self._codes[h]

            dead_tokens = [
                t
                for t in self._tokens.values()
                if not t.access_valid(now) and not t.refresh_valid(now)
            ]
            for token in dead_tokens:
                del self._tokens[token.id]
                self._access_index.pop(token.access_token_hash, None)
                if token.refresh_token_hash:
                    self._refresh_index.pop(token.refresh_token_hash, None)

            removed = len(dead_codes) + len(dead_tokens)
            if removed:
                self._commit(checkpoint)
            return removed


# ---------------------------------------------------------------------------
# File-backed store
# ---------------------------------------------------------------------------


_STATE_ATTRS = (
    "_clients",
    "_codes",
    "_tokens",
    "_access_index",
    "_refresh_index",
    "_api_keys",
    "_key_hash_index",
    "_session_scopes",
)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _record_to_dict(record: Any) -> dict[str, Any]:
    return {k: _encode(v) for k, v in asdict(record).items()}


def _record_from_dict(cls: type, data: dict[str, Any]) -> Any:
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if isinstance(value, str) and ("datetime" in str(f.type)):
            value = datetime.fromisoformat(value)
        kwargs[f.name] = value
    return cls(**kwargs)


class FileCredentialStore(InMemoryCredentialStore):
    """JSON-file store: full snapshot written atomically after each mutation.

    Suitable for single-process deployments; the file is chmod 0600.
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = path
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise CredentialStoreError(f"Failed to load credential store {self._path}: {exc}") from exc

        for entry in data.get("clients", []):
            client = _record_from_dict(OAuthClient, entry)
            self._clients[client.client_id] = client
        for entry in data.get("codes", []):
            code = _record_from_dict(AuthorizationCode, entry)
            self._codes[code.code_hash] = code
        for entry in data.get("tokens", []):
            token = _record_from_dict(OAuthToken, entry)
            self._tokens[token.id] = token
            self._access_index[token.access_token_hash] = token.id
            if token.refresh_token_hash:
                self._refresh_index[token.refresh_token_hash] = token.id
        for entry in data.get("api_keys", []):
            record = _record_from_dict(APIKeyRecord, entry)
            self._api_keys[record.id] = record
            self._key_hash_index[record.key_hash] = record.id
        for entry in data.get("session_scopes", []):
            scope = _record_from_dict(SessionScope, entry)
            self._session_scopes[scope.session_id] = scope

        logger.debug(
            "Loaded credential store from %s (%d clients, %d tokens, %d api keys, %d sessions)",
            self._path,
            len(self._clients),
            len(self._tokens),
            len(self._api_keys),
            len(self._session_scopes),
        )

    def _checkpoint(self) -> dict[str, Any]:
        return copy.deepcopy({name: getattr(self, name) for name in _STATE_ATTRS})

    def _commit(self, checkpoint: Any) -> None:
        try:
            self._write_snapshot()
        except CredentialStoreError:
            # Memory must not get ahead of disk.
            for name, value in checkpoint.items():
                setattr(self, name, value)
            raise

    def _write_snapshot(self) -> None:
        snapshot = {
            "clients": [_record_to_dict(c) for c in self._clients.values()],
            "codes": [_record_to_dict(c) for c in self._codes.values()],
            "tokens": [_record_to_dict(t) for t in self._tokens.values()],
            "api_keys": [_record_to_dict(k) for k in self._api_keys.values()],
            "session_scopes": [_record_to_dict(s) for s in self._session_scopes.values()],
        }
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
            try:
                temp_path.chmod(0o600)
            except OSError:
                pass
            temp_path.replace(self._path)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            raise CredentialStoreError(f"Failed to write credential store {self._path}: {exc}") from exc
