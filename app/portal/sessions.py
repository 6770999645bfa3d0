"""
Server-side sessions stored in the database.

The browser only receives a signed, random session id. The session payload
(authentication flag, user identity, flash messages, CSRF token) lives in the
`sessions` table, encrypted with a key derived from SESSION_STORE_SECRET, and
expires SESSION_TTL_SECONDS after the last request that touched it.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from flask import Flask, Request, Response
from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, Signer
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import CallbackDict

from app.portal.db import session_scope
from app.portal.models import UserSession
from app.portal.utils import utcnow

logger = logging.getLogger(__name__)


class ServerSideSession(CallbackDict, SessionMixin):
    def __init__(self, initial: dict[str, Any] | None = None, sid: str = "", new: bool = False) -> None:
        def on_update(self_: ServerSideSession) -> None:
            self_.modified = True
            self_.accessed = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.previous_sid: str | None = None
        self.new = new
        self.modified = False
        self.accessed = False

    def __getitem__(self, key: str) -> Any:
        self.accessed = True
        return super().__getitem__(key)

    def get(self, key: str, default: Any = None) -> Any:
        self.accessed = True
        return super().get(key, default)

    def setdefault(self, key: str, default: Any = None) -> Any:
        self.accessed = True
        return super().setdefault(key, default)

    def regenerate(self) -> None:
        """Move the data to a fresh id; the old row is removed when the session is saved."""
        if self.previous_sid is None:
            self.previous_sid = self.sid
        self.sid = new_session_id()
        self.modified = True


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def derive_fernet(secret: str) -> Fernet:
    """Fernet wants a 32-byte urlsafe-base64 key; derive one from an arbitrary secret."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class DatabaseSessionInterface(SessionInterface):
    salt = "portal-session-cookie"
    serializer = TaggedJSONSerializer()
    session_class = ServerSideSession

    def _signer(self, app: Flask) -> Signer | None:
        if not app.secret_key:
            return None
        return Signer(app.secret_key, salt=self.salt, key_derivation="hmac", digest_method=hashlib.sha256)

    def _fernet(self, app: Flask) -> Fernet:
        return derive_fernet(app.config["SESSION_STORE_SECRET"])

    def _new(self) -> ServerSideSession:
        return self.session_class(sid=new_session_id(), new=True)

    def encode_payload(self, app: Flask, data: dict[str, Any]) -> str:
        raw = self.serializer.dumps(data).encode("utf-8")
        return self._fernet(app).encrypt(raw).decode("utf-8")

    def decode_payload(self, app: Flask, token: str) -> dict[str, Any]:
        try:
            raw = self._fernet(app).decrypt(token.encode("utf-8"))
        except InvalidToken as e:
            raise ValueError("Session payload could not be decrypted") from e
        return self.serializer.loads(raw.decode("utf-8"))

    def open_session(self, app: Flask, request: Request) -> ServerSideSession | None:
        signer = self._signer(app)
        if signer is None:
            return None

        cookie = request.cookies.get(self.get_cookie_name(app))
        if not cookie:
            return self._new()
        try:
            sid = signer.unsign(cookie).decode("utf-8")
        except BadSignature:
            logger.warning("Rejected session cookie with a bad signature")
            return self._new()

        try:
            with session_scope(app) as s:
                row = s.get(UserSession, sid)
                if row is None:
                    return self._new()
                if row.expires_at <= utcnow():
                    s.delete(row)
                    return self._new()
                token = row.data
        except SQLAlchemyError as e:
            logger.error("Session store unavailable while loading session: %s", e)
            return self._new()

        try:
            data = self.decode_payload(app, token)
        except ValueError:
            logger.warning("Discarding undecryptable session %s...", sid[:8])
            return self._new()
        return self.session_class(data, sid=sid)

    def destroy(self, app: Flask, sid: str) -> None:
        try:
            with session_scope(app) as s:
                s.execute(delete(UserSession).where(UserSession.id == sid))
        except SQLAlchemyError as e:
            logger.error("Session store unavailable while destroying session: %s", e)

    def save_session(self, app: Flask, session: SessionMixin, response: Response) -> None:
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)

        if session.accessed:
            response.vary.add("Cookie")

        previous_sid = getattr(session, "previous_sid", None)
        if previous_sid:
            self.destroy(app, previous_sid)

        # Emptied (logout) -> drop the row and the cookie. Never-used -> nothing to store.
        if not session:
            if session.modified:
                self.destroy(app, session.sid)
                response.delete_cookie(
                    name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly
                )
                response.vary.add("Cookie")
            return

        if not (session.modified or app.config.get("SESSION_REFRESH_EACH_REQUEST")):
            return

        signer = self._signer(app)
        if signer is None:
            return

        expires = utcnow() + timedelta(seconds=int(app.config["SESSION_TTL_SECONDS"]))
        token = self.encode_payload(app, dict(session))
        try:
            with session_scope(app) as s:
                row = s.get(UserSession, session.sid)
                if row is None:
                    s.add(UserSession(id=session.sid, data=token, expires_at=expires))
                else:
                    row.data = token
                    row.expires_at = expires
        except SQLAlchemyError as e:
            logger.error("Session store unavailable while saving session: %s", e)
            return

        response.set_cookie(
            name,
            signer.sign(session.sid).decode("utf-8"),
            expires=expires,
            httponly=httponly,
            domain=domain,
            path=path,
            secure=secure,
            samesite=samesite,
        )
        response.vary.add("Cookie")
