"""Identity provider backed by the Google Identity Toolkit REST API.

Copyright (c) 2025 Popera. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .._base import BaseClient, RequestConfig
from ..exceptions import NoAuthenticatedSession, ProviderError, SecondFactorRequired
from ..models import (
    AuthSession,
    EnrolledFactor,
    FactorHint,
    MfaResolverSession,
    PhoneCredential,
    SignInChallenge,
)
from ..phone import mask_phone
from .base import IdentityProvider

if TYPE_CHECKING:
    from ..widget import ChallengeWidget

logger = logging.getLogger(__name__)


def _require(data: dict[str, Any], *path: str) -> str:
    value: Any = data
    for key in path:
        value = value.get(key) if isinstance(value, dict) else None
    if not value:
        raise ProviderError(
            "Identity provider returned an invalid response",
            "INVALID_RESPONSE",
            details={"missing": ".".join(path)},
        )
    return str(value)


class IdentityToolkitProvider(IdentityProvider):
    """Phone second factors and phone linking over Identity Toolkit."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://identitytoolkit.googleapis.com",
        *,
        timeout: float = 30.0,
        retries: int = 3,
    ) -> None:
        """Initialize the provider.

        Args:
            api_key: Web API key of the project
            base_url: Identity Toolkit base URL (overridable for emulators)
            timeout: Request timeout in seconds
            retries: Retry attempts for network errors and 5xx responses

        """
        self.api_key = api_key
        self._client = BaseClient(base_url, timeout=timeout, retries=retries)
        self._session: AuthSession | None = None

    async def __aenter__(self) -> IdentityToolkitProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.close()

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        config = RequestConfig(json_data=payload, params={"key": self.api_key})
        return await self._client.make_request("POST", endpoint, config=config)

    def set_session(self, session: AuthSession) -> None:
        """Set the signed-in session used for enrollment and linking."""
        self._session = session

    def clear_session(self) -> None:
        """Forget the signed-in session."""
        self._session = None

    async def current_session(self) -> AuthSession | None:
        return self._session

    def _require_session(self) -> AuthSession:
        if self._session is None:
            raise NoAuthenticatedSession()
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Primary email/password sign-in.

        Returns:
            The authenticated session.

        Raises:
            SecondFactorRequired: If the account has an enrolled second factor.
            ProviderError: For any other provider rejection.

        """
        data = await self._post(
            "/v1/accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        if data.get("mfaPendingCredential"):
            hints = [
                FactorHint(
                    factor_id=info["mfaEnrollmentId"],
                    masked_phone_number=info.get("phoneInfo"),
                    display_name=info.get("displayName"),
                    enrolled_at=info.get("enrolledAt"),
                )
                for info in data.get("mfaInfo", [])
                if info.get("mfaEnrollmentId")
            ]
            logger.info("Second factor required for sign-in (%d hints)", len(hints))
            raise SecondFactorRequired(
                MfaResolverSession(
                    session_token=data["mfaPendingCredential"],
                    enrolled_factor_hints=hints,
                    provider_data={"localId": data.get("localId"), "email": data.get("email")},
                )
            )

        session = AuthSession(
            account_id=_require(data, "localId"),
            id_token=_require(data, "idToken"),
            refresh_token=data.get("refreshToken"),
        )
        self._session = session
        return session

    async def begin_enrollment_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        session = self._require_session()
        token = await widget.verify()
        logger.info("Enrollment started for %s", mask_phone(phone_number))
        data = await self._post(
            "/v2/accounts/mfaEnrollment:start",
            {
                "idToken": session.id_token,
                "phoneEnrollmentInfo": {
                    "phoneNumber": phone_number,
                    "recaptchaToken": token,
                },
            },
        )
        return _require(data, "phoneSessionInfo", "sessionInfo")

    async def begin_sign_in_challenge(
        self,
        resolver_session: MfaResolverSession,
        hint: FactorHint,
        widget: ChallengeWidget,
    ) -> SignInChallenge:
        token = await widget.verify()
        data = await self._post(
            "/v2/accounts/mfaSignIn:start",
            {
                "mfaPendingCredential": resolver_session.session_token,
                "mfaEnrollmentId": hint.factor_id,
                "phoneSignInInfo": {"recaptchaToken": token},
            },
        )
        return SignInChallenge(
            handle=_require(data, "phoneResponseInfo", "sessionInfo"),
            masked_phone_number=hint.masked_phone_number,
        )

    async def begin_link_challenge(
        self, phone_number: str, widget: ChallengeWidget
    ) -> str:
        self._require_session()
        token = await widget.verify()
        data = await self._post(
            "/v1/accounts:sendVerificationCode",
            {"phoneNumber": phone_number, "recaptchaToken": token},
        )
        return _require(data, "sessionInfo")

    async def confirm(self, handle: str, code: str) -> PhoneCredential:
        # Identity Toolkit validates the code when the credential is used.
        return PhoneCredential(handle=handle, code=code)

    async def bind_second_factor(
        self, credential: PhoneCredential, label: str
    ) -> EnrolledFactor:
        session = self._require_session()
        data = await self._post(
            "/v2/accounts/mfaEnrollment:finalize",
            {
                "idToken": session.id_token,
                "displayName": label,
                "phoneVerificationInfo": {
                    "sessionInfo": credential.handle,
                    "code": credential.code,
                },
            },
        )
        self._session = session.model_copy(
            update={
                "id_token": data.get("idToken") or session.id_token,
                "refresh_token": data.get("refreshToken") or session.refresh_token,
            }
        )
        factors = await self.list_enrolled_factors()
        if not factors:
            raise ProviderError(
                "Enrollment finalized but no factor was listed",
                "INVALID_RESPONSE",
            )
        return factors[-1]

    async def resolve_sign_in(
        self, resolver_session: MfaResolverSession, credential: PhoneCredential
    ) -> AuthSession:
        data = await self._post(
            "/v2/accounts/mfaSignIn:finalize",
            {
                "mfaPendingCredential": resolver_session.session_token,
                "phoneVerificationInfo": {
                    "sessionInfo": credential.handle,
                    "code": credential.code,
                },
            },
        )
        session = AuthSession(
            account_id=data.get("localId") or resolver_session.provider_data.get("localId") or "",
            id_token=_require(data, "idToken"),
            refresh_token=data.get("refreshToken"),
        )
        self._session = session
        return session

    async def link_phone_number(self, credential: PhoneCredential) -> AuthSession:
        session = self._require_session()
        data = await self._post(
            "/v1/accounts:signInWithPhoneNumber",
            {
                "sessionInfo": credential.handle,
                "code": credential.code,
                "idToken": session.id_token,
            },
        )
        linked = AuthSession(
            account_id=data.get("localId") or session.account_id,
            id_token=data.get("idToken") or session.id_token,
            refresh_token=data.get("refreshToken") or session.refresh_token,
            phone_number=data.get("phoneNumber"),
        )
        self._session = linked
        return linked

    async def list_enrolled_factors(self) -> list[EnrolledFactor]:
        session = self._require_session()
        data = await self._post("/v1/accounts:lookup", {"idToken": session.id_token})
        users = data.get("users") or [{}]
        return [
            EnrolledFactor(
                factor_id=info["mfaEnrollmentId"],
                phone_number=info.get("phoneInfo"),
                display_name=info.get("displayName"),
                enrolled_at=info.get("enrolledAt"),
            )
            for info in users[0].get("mfaInfo", [])
            if info.get("mfaEnrollmentId")
        ]

    def resolver_from_error(self, error: BaseException) -> MfaResolverSession | None:
        if isinstance(error, SecondFactorRequired):
            return error.resolver_session
        return None
