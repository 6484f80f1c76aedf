"""
Async authentication service.

Handles store sign-in, the persisted identity fast path and logout.
"""
import asyncio
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp

from .async_client import AsyncStoreClient, StoreResponse
from ..exceptions import (
    AuthTransportError,
    InvalidCredentialsError,
    SecretStoreError,
    StoreProtocolError,
    TwoFactorRequiredError,
)
from ..logging import get_logger
from ..session import Credential, CredentialVault, SessionContext, SessionData

# customerMessage the store sends when the password needs a 2FA code appended
TWO_FACTOR_MESSAGE = 'MZFinance.BadLogin.Configurator_message'


class AuthState(Enum):
    """Authentication state machine states."""
    UNAUTHENTICATED = 'unauthenticated'
    AUTHENTICATING = 'authenticating'
    AUTHENTICATED = 'authenticated'


class AsyncAuthService:
    """
    Asynchronous authentication service.

    Owns the credential and the session context. A persisted identity
    is reused without touching the network; otherwise sign-in is
    attempted up to RetryConfig.max_attempts times, one after another.
    """

    def __init__(self, client: AsyncStoreClient, vault: CredentialVault):
        """
        Initialize auth service.

        Args:
            client: Async store client
            vault: Encrypted identity storage
        """
        self._client = client
        self._vault = vault
        self._logger = get_logger('ipadown.auth')
        self._state = AuthState.UNAUTHENTICATED
        self._credential: Optional[Credential] = None
        self._context: Optional[SessionContext] = None
        self._auth_url = client.config.endpoints.auth_url

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    @property
    def context(self) -> Optional[SessionContext]:
        """Session context, only while authenticated."""
        if self._state is not AuthState.AUTHENTICATED:
            return None
        return self._context

    @property
    def is_authenticated(self) -> bool:
        return self._state is AuthState.AUTHENTICATED

    def restore(self) -> Optional[SessionContext]:
        """
        Load the persisted identity, if any.

        An identity that no longer decrypts is discarded.

        Returns:
            SessionContext if a usable identity was restored
        """
        try:
            data = self._vault.load()
        except SecretStoreError as e:
            self._logger.warning(f"Discarding stored identity: {e}")
            self._discard()
            return None

        if data is None:
            return None
        if not data.is_valid():
            self._logger.warning("Stored identity is incomplete, discarding it")
            self._discard()
            return None

        if not data.context.guid:
            data.context.guid = data.credential.guid
        self._credential = data.credential
        self._context = data.context
        self._client.load_cookies(data.context.cookies)
        self._state = AuthState.AUTHENTICATED
        self._logger.info(f"Restored session for {data.context.account_name or data.credential.apple_id}")
        return data.context

    def _discard(self) -> None:
        try:
            self._vault.delete()
        except SecretStoreError as e:
            self._logger.warning(f"Could not remove stored identity: {e}")

    async def authenticate(
        self,
        credential: Credential,
        two_factor_code: Optional[str] = None
    ) -> SessionContext:
        """
        Sign in to the store.

        Args:
            credential: Account credentials
            two_factor_code: One-time code, appended to the password

        Returns:
            SessionContext with auth headers and cookies

        Raises:
            TwoFactorRequiredError: The store wants a code and none was given
            InvalidCredentialsError: Every attempt was refused
            AuthTransportError: The store could not be reached
        """
        restored = self.restore()
        if restored is not None:
            return restored

        credential.ensure_guid()
        password = credential.password + (two_factor_code or '')
        fields: Dict[str, Any] = {
            'appleId': credential.apple_id,
            'password': password,
            'guid': credential.guid,
            'rmp': '0',
            'why': 'signIn',
        }

        # A supplied code is good for one try only
        max_attempts = 1 if two_factor_code else self._client.config.retry.max_attempts
        self._state = AuthState.AUTHENTICATING
        self._logger.info(f"Authenticating {credential.apple_id} (guid {credential.guid})")

        detail: Optional[str] = None
        transport_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            fields['attempt'] = str(attempt)
            try:
                reply = await self._client.post_plist(self._auth_url, fields)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self._logger.warning(f"Attempt {attempt} failed to reach the store: {e}")
                transport_error = e
                continue
            except StoreProtocolError as e:
                self._logger.warning(f"Attempt {attempt}: {e}")
                detail = str(e)
                transport_error = None
                continue
            transport_error = None

            if reply.is_redirect:
                if reply.location:
                    self._logger.debug(f"Store redirected sign-in to {reply.location}")
                    self._auth_url = reply.location
                continue

            body = reply.body or {}
            if body.get('m-allowed'):
                try:
                    context = self._build_context(reply, credential.guid)
                except (KeyError, TypeError, ValueError) as e:
                    self._logger.warning(f"Attempt {attempt}: incomplete sign-in reply ({e})")
                    detail = f"Incomplete sign-in reply: {e}"
                    continue
                return self._complete(credential, context)

            detail = body.get('customerMessage') or body.get('failureType') or detail
            self._logger.info(f"Attempt {attempt} refused: {detail}")

            if not two_factor_code and self._needs_two_factor(body):
                self._state = AuthState.UNAUTHENTICATED
                raise TwoFactorRequiredError(
                    "A two-factor code is required",
                    body.get('customerMessage')
                )

        self._state = AuthState.UNAUTHENTICATED
        if transport_error is not None:
            raise AuthTransportError("Could not reach the store", str(transport_error))
        raise InvalidCredentialsError(
            f"Authentication failed after {max_attempts} attempt(s)",
            detail
        )

    @staticmethod
    def _needs_two_factor(body: Dict[str, Any]) -> bool:
        return body.get('customerMessage') == TWO_FACTOR_MESSAGE

    def _build_context(self, reply: StoreResponse, guid: str) -> SessionContext:
        """Extract auth headers and account details from a granted sign-in."""
        body = reply.body or {}
        dsid = str(int(body['download-queue-info']['dsid']))
        store_front = reply.headers.get('x-set-apple-store-front')
        if not store_front:
            raise KeyError('x-set-apple-store-front')
        token = body['passwordToken']
        if not isinstance(token, str):
            raise TypeError('passwordToken is not a string')

        address = (body.get('accountInfo') or {}).get('address') or {}
        account_name = ' '.join(
            part for part in (address.get('firstName'), address.get('lastName')) if part
        )

        return SessionContext(
            headers={
                'X-Dsid': dsid,
                'iCloud-Dsid': dsid,
                'X-Apple-Store-Front': store_front,
                'X-Token': token,
            },
            cookies=self._client.export_cookies(),
            account_name=account_name,
            guid=guid,
        )

    def _complete(self, credential: Credential, context: SessionContext) -> SessionContext:
        self._credential = credential
        self._context = context
        self._state = AuthState.AUTHENTICATED
        self._logger.info(f"Authenticated as {context.account_name or credential.apple_id}")
        try:
            self._vault.save(SessionData(credential=credential, context=context))
        except SecretStoreError as e:
            self._logger.warning(f"Could not persist session: {e}")
        return context

    async def logout(self) -> None:
        """
        Forget the identity.

        Removes the persisted blob, then wipes and regenerates the key.
        """
        try:
            self._vault.delete()
            self._vault.store.wipe()
            self._vault.store.generate_key()
        finally:
            self._credential = None
            self._context = None
            self._client.cookie_jar.clear()
            self._state = AuthState.UNAUTHENTICATED
            self._logger.info("Logged out")
