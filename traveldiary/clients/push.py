from __future__ import annotations

import base64
import json
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from traveldiary.core.logging import get_logger
from traveldiary.core.settings import S

logger = get_logger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _compact(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


class PushDispatcher:
    """
    Firebase Cloud Messaging (HTTP v1) sender. Best effort: every failure is
    reported in the result, nothing is raised to the caller.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        project_id: str = "",
        client_email: str = "",
        private_key: str = "",
        http: Optional[requests.Session] = None,
        timeout: float = 5.0,
    ):
        self.enabled = enabled
        self.project_id = project_id
        self.client_email = client_email
        self.private_key = private_key
        self.timeout = timeout
        self._http = http or requests.Session()
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._token_exp = 0

    @classmethod
    def from_settings(cls) -> "PushDispatcher":
        return cls(
            enabled=S.push_enabled,
            project_id=S.fcm_project_id,
            client_email=S.fcm_client_email,
            private_key=S.fcm_private_key,
        )

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.project_id and self.client_email and self.private_key)

    def _assertion(self, now: int) -> str:
        key_pem = self.private_key.replace("\\n", "\n").encode("utf-8")
        key = serialization.load_pem_private_key(key_pem, password=None)
        header = {"alg": "RS256", "typ": "JWT"}
        payload = {
            "iss": self.client_email,
            "scope": FCM_SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        signing_input = f"{_b64url(_compact(header))}.{_b64url(_compact(payload))}"
        sig = key.sign(signing_input.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return signing_input + "." + _b64url(sig)

    def access_token(self) -> Optional[str]:
        if not self.configured:
            return None
        now = int(time.time())
        with self._lock:
            if self._token and now < self._token_exp - 60:
                return self._token
            try:
                r = self._http.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": self._assertion(now),
                    },
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                logger.warning("fcm_token_request_failed", error=str(exc))
                return None
            except ValueError as exc:
                logger.error("fcm_private_key_invalid", error=str(exc))
                return None
            if r.status_code != 200:
                logger.warning("fcm_token_rejected", status=r.status_code)
                return None
            body = r.json()
            self._token = body.get("access_token")
            self._token_exp = now + int(body.get("expires_in", 3600))
            return self._token

    def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        result: Dict[str, Any] = {"token": token, "success": False, "error": None}
        if not token:
            result["error"] = "missing_token"
            return result
        at = self.access_token()
        if not at:
            result["error"] = "push_disabled" if not self.configured else "auth_failed"
            return result
        url = f"https://fcm.googleapis.com/v1/projects/{self.project_id}/messages:send"
        msg = {
            "message": {
                "token": token,
                "notification": {"title": title[:60], "body": body[:180]},
                "data": {k: str(v) for k, v in (data or {}).items()},
            }
        }
        try:
            r = self._http.post(url, headers={"Authorization": f"Bearer {at}"}, json=msg, timeout=self.timeout)
        except requests.RequestException as exc:
            result["error"] = str(exc)
            return result
        result["success"] = r.status_code in (200, 202)
        if not result["success"]:
            result["error"] = f"http_{r.status_code}"
        return result

    def send_multicast(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        results: List[Dict[str, Any]] = [self.send(t, title, body, data) for t in tokens if t]
        return {
            "success_count": sum(1 for r in results if r["success"]),
            "results": results,
        }
