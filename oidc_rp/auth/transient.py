"""
Transient storage for the per-login authorization context.

The state and PKCE verifier generated at login must survive until the
callback and be discarded afterwards. Storage is abstracted as a small
request-scoped key-value interface so the callback logic does not depend
on where the values live (client cookies, a server-side store, a dict).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, MutableMapping, Optional, Tuple

from starlette.responses import Response

from oidc_rp.models import AuthorizationRequest

STATE_KEY = "oidc_state"
CODE_VERIFIER_KEY = "oidc_code_verifier"


class TransientStore(ABC):
    """Request-scoped key-value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryTransientStore(TransientStore):
    """Dict-backed store, shared by reference with the caller."""

    def __init__(self, data: Optional[MutableMapping[str, str]] = None):
        self.data: MutableMapping[str, str] = {} if data is None else data

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class CookieTransientStore(TransientStore):
    """
    Cookie-backed store.

    Reads come from the incoming request cookies (overlaid with any writes
    made in this request). Writes and deletes are queued and written to the
    outgoing response by ``apply``, since the response is usually built
    after the flow has finished.

    Args:
        cookies: Incoming request cookies
        secure: Set the Secure attribute (production)
        max_age: Cookie lifetime in seconds
    """

    def __init__(self, cookies: Mapping[str, str], secure: bool, max_age: int = 600):
        self._cookies = dict(cookies)
        self._secure = secure
        self._max_age = max_age
        self._pending: List[Tuple[str, Optional[str]]] = []

    def get(self, key: str) -> Optional[str]:
        return self._cookies.get(key)

    def set(self, key: str, value: str) -> None:
        self._cookies[key] = value
        self._pending.append((key, value))

    def delete(self, key: str) -> None:
        self._cookies.pop(key, None)
        self._pending.append((key, None))

    def apply(self, response: Response) -> Response:
        """Write queued cookie changes to ``response``; the last change per key wins."""
        final: Dict[str, Optional[str]] = {}
        for key, value in self._pending:
            final[key] = value

        for key, value in final.items():
            if value is None:
                response.delete_cookie(
                    key=key,
                    path="/",
                    httponly=True,
                    secure=self._secure,
                    samesite="lax",
                )
            else:
                response.set_cookie(
                    key=key,
                    value=value,
                    max_age=self._max_age,
                    path="/",
                    httponly=True,
                    secure=self._secure,
                    samesite="lax",
                )

        self._pending.clear()
        return response


class AuthorizationContextStore:
    """Persist, load and discard the state/verifier pair of one login attempt."""

    def __init__(self, store: TransientStore):
        self.store = store

    def save(self, request: AuthorizationRequest) -> None:
        self.store.set(CODE_VERIFIER_KEY, request.code_verifier)
        self.store.set(STATE_KEY, request.state)

    def load(self) -> Tuple[Optional[str], Optional[str]]:
        """
        Returns:
            ``(state, code_verifier)``; either may be None
        """
        return self.store.get(STATE_KEY), self.store.get(CODE_VERIFIER_KEY)

    def discard(self) -> None:
        self.store.delete(STATE_KEY)
        self.store.delete(CODE_VERIFIER_KEY)
