"""
Callback orchestration for the authorization code flow.

The callback runs as a linear state machine::

    received -> state_validated -> code_exchanged -> userinfo_fetched -> session_created

Any failed transition ends in ``failed`` with an opaque reason code. The
persisted authorization context is discarded on every exit path, and a
session token is minted only after every upstream step has succeeded.
"""

import enum
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from oidc_rp.auth.id_token import IdTokenVerifier
from oidc_rp.auth.oidc import OIDCClient
from oidc_rp.auth.session import SessionCodec
from oidc_rp.auth.transient import AuthorizationContextStore
from oidc_rp.errors import AuthError, InvalidRequest, InvalidState, UserInfoError
from oidc_rp.models import SessionRecord

logger = logging.getLogger(__name__)

GENERIC_FAILURE_REASON = "authentication_failed"


class CallbackStage(str, enum.Enum):
    RECEIVED = "received"
    STATE_VALIDATED = "state_validated"
    CODE_EXCHANGED = "code_exchanged"
    USERINFO_FETCHED = "userinfo_fetched"
    SESSION_CREATED = "session_created"
    FAILED = "failed"


@dataclass
class CallbackOutcome:
    """
    Terminal result of a callback.

    Attributes:
        stage: ``SESSION_CREATED`` on success, ``FAILED`` otherwise
        reason: Opaque reason code for the client (failures only)
        failed_at: Last stage reached before failing
        record: Session record (success only)
        session_token: Signed session token (success only)
    """

    stage: CallbackStage
    reason: Optional[str] = None
    failed_at: Optional[CallbackStage] = None
    record: Optional[SessionRecord] = None
    session_token: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stage is CallbackStage.SESSION_CREATED


class CallbackOrchestrator:
    """
    Validate a callback and turn it into a session.

    Args:
        client: Token exchange and userinfo client
        codec: Session codec used to mint the session token
        id_token_verifier: Optional verifier; when given, an ID token in the
            token set must verify and match the userinfo subject
        clock: Source of the current epoch time
    """

    def __init__(
        self,
        client: OIDCClient,
        codec: SessionCodec,
        id_token_verifier: Optional[IdTokenVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.codec = codec
        self.id_token_verifier = id_token_verifier
        self._clock = clock

    async def handle(
        self,
        params: Mapping[str, str],
        context: AuthorizationContextStore,
    ) -> CallbackOutcome:
        """
        Run the callback state machine.

        Args:
            params: Callback query parameters (``code``, ``state``, or ``error``)
            context: Store holding the state/verifier pair persisted at login

        Returns:
            CallbackOutcome; never raises
        """
        stage = CallbackStage.RECEIVED

        try:
            code, code_verifier = self._validate(params, context)
            stage = CallbackStage.STATE_VALIDATED

            tokens = await self.client.exchange_code(code, code_verifier)
            stage = CallbackStage.CODE_EXCHANGED

            id_token_claims = None
            if self.id_token_verifier is not None and tokens.id_token:
                id_token_claims = await self.id_token_verifier.verify(tokens.id_token)

            user = await self.client.fetch_userinfo(tokens.access_token)
            if not user.sub:
                raise UserInfoError("Userinfo response has no subject")
            if id_token_claims is not None and id_token_claims.get("sub") != user.sub:
                raise UserInfoError("Userinfo subject does not match ID token subject")
            stage = CallbackStage.USERINFO_FETCHED

            now = int(self._clock())
            record = SessionRecord(
                user=user,
                access_token=tokens.access_token,
                id_token=tokens.id_token,
                expires_at=now + tokens.expires_in,
                issued_at=now,
            )
            session_token = self.codec.encode(record)

            logger.info(
                "Login completed",
                extra={"user_id": user.sub, "expires_at": record.expires_at},
            )
            return CallbackOutcome(
                stage=CallbackStage.SESSION_CREATED,
                record=record,
                session_token=session_token,
            )

        except AuthError as e:
            logger.warning(
                f"Callback failed: {e}",
                extra={
                    "failed_at": stage.value,
                    "error_type": type(e).__name__,
                    "reason": e.reason,
                },
            )
            return CallbackOutcome(stage=CallbackStage.FAILED, reason=e.reason, failed_at=stage)

        except Exception as e:
            logger.error(
                f"Unexpected error in callback: {e}",
                extra={"failed_at": stage.value},
                exc_info=True,
            )
            return CallbackOutcome(
                stage=CallbackStage.FAILED,
                reason=GENERIC_FAILURE_REASON,
                failed_at=stage,
            )

        finally:
            context.discard()

    @staticmethod
    def _validate(params: Mapping[str, str], context: AuthorizationContextStore):
        if params.get("error"):
            raise InvalidRequest(
                f"Provider returned error: {params.get('error')}",
                reason="provider_error",
            )

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            raise InvalidRequest("Missing required parameters (code or state)")

        expected_state, code_verifier = context.load()
        if not expected_state or not code_verifier:
            raise InvalidRequest("Missing persisted state or code verifier")

        if not secrets.compare_digest(expected_state.encode(), state.encode()):
            raise InvalidState("State parameter does not match persisted state")

        return code, code_verifier
