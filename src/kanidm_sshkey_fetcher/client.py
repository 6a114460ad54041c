"""Minimal kanidm REST client used to look up account SSH keys."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import requests
from cryptography import x509

from kanidm_sshkey_fetcher.config import EffectiveConfig
from kanidm_sshkey_fetcher.errors import (
    AccountKeysError,
    AuthenticationError,
    ClientBuildError,
    TransportError,
)

logger = logging.getLogger(__name__)

AUTH_SESSION_HEADER = "x-kanidm-auth-session-id"
ANONYMOUS = "anonymous"


@dataclass
class KanidmClient:
    base_url: str
    ca_path: Path | None = None
    verify_ca: bool = True
    timeout: float = 10.0

    def __post_init__(self) -> None:
        self._session = requests.Session()
        if not self.verify_ca:
            self._session.verify = False
        elif self.ca_path is not None:
            self._session.verify = str(self.ca_path)
        self._token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        merged_headers = dict(headers or {})
        if self._token:
            merged_headers["authorization"] = f"Bearer {self._token}"
        try:
            return self._session.request(
                method,
                self._url(path),
                json=json_payload,
                headers=merged_headers or None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc

    def _auth_step(self, step: dict, session_id: str | None) -> tuple[dict, str | None]:
        headers = {AUTH_SESSION_HEADER: session_id} if session_id else None
        response = self._send("POST", "/v1/auth", json_payload={"step": step}, headers=headers)
        if response.status_code >= 400:
            raise AuthenticationError(
                f"auth request failed: {response.status_code} {response.text}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise AuthenticationError("auth response was not valid JSON") from exc
        state = body.get("state") if isinstance(body, dict) else None
        if not isinstance(state, dict):
            raise AuthenticationError(f"unexpected auth response: {body!r}")
        return state, response.headers.get(AUTH_SESSION_HEADER, session_id)

    def auth_anonymous(self) -> None:
        """Authenticate as the anonymous account and keep the issued token."""
        state, session_id = self._auth_step(
            {"init2": {"username": ANONYMOUS, "issue": "token", "privileged": False}},
            None,
        )
        if ANONYMOUS not in state.get("choose", []):
            raise AuthenticationError(f"anonymous auth not offered: {state!r}")

        state, session_id = self._auth_step({"begin": ANONYMOUS}, session_id)
        if ANONYMOUS not in state.get("continue", []):
            raise AuthenticationError(f"anonymous auth not continued: {state!r}")

        state, _ = self._auth_step({"cred": ANONYMOUS}, session_id)
        token = state.get("success")
        if not isinstance(token, str):
            denied = state.get("denied")
            raise AuthenticationError(f"anonymous auth denied: {denied or state!r}")
        self._token = token
        logger.debug("authenticated anonymously to %s", self.base_url)

    def get_account_ssh_pubkeys(self, account_id: str) -> list[str]:
        response = self._send("GET", f"/v1/account/{quote(account_id, safe='')}/_ssh_pubkeys")
        if response.status_code >= 400:
            raise AccountKeysError(
                f"ssh key lookup failed for {account_id}: {response.status_code}",
                account_id=account_id,
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise AccountKeysError(
                f"ssh key response for {account_id} was not valid JSON",
                account_id=account_id,
            ) from exc
        if not isinstance(body, list) or not all(isinstance(key, str) for key in body):
            raise AccountKeysError(
                f"unexpected ssh key response for {account_id}",
                account_id=account_id,
            )
        return body


def _check_ca_certificate(ca_path: Path) -> None:
    try:
        data = ca_path.read_bytes()
    except OSError as exc:
        raise ClientBuildError(f"failed to read ca certificate {ca_path}: {exc}") from exc
    try:
        x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise ClientBuildError(f"invalid ca certificate {ca_path}: {exc}") from exc


def build_client(config: EffectiveConfig) -> KanidmClient:
    if not config.server_address:
        raise ClientBuildError("no server address configured; set uri in config or pass --url")
    if config.ca_path is not None:
        _check_ca_certificate(config.ca_path)
    return KanidmClient(
        base_url=config.server_address,
        ca_path=config.ca_path,
        verify_ca=config.verify_ca,
        timeout=config.connect_timeout,
    )


__all__ = ["KanidmClient", "build_client"]
