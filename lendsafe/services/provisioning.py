"""Identity provisioning for approved user-creation requests.

The workflow creates an identity per approved request and deletes it again
when the local records for it cannot be committed. Which identity store backs
it is chosen by ``IDENTITY_PROVIDER``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from lendsafe.core.security import generate_temporary_password, get_password_hash
from lendsafe.core.settings import Settings, settings

logger = logging.getLogger(__name__)

IDENTITY_EXISTS = "identity_exists"
PHONE_EXISTS = "phone_exists"
PROVIDER_ERROR = "provider_error"
PROVIDER_UNAVAILABLE = "provider_unavailable"


class ProvisioningError(Exception):
    def __init__(self, code: str, message: str, *, field: str | None = None) -> None:
        self.code = code
        self.message = message
        self.field = field
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class IdentityRequest:
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None


@dataclass(frozen=True, slots=True)
class ProvisionedIdentity:
    auth_id: str
    hashed_password: str | None = None
    # One-time values for the caller (never persisted by the workflow)
    secrets: dict[str, str] = field(default_factory=dict)


class IdentityProvisioner(Protocol):
    async def create_identity(self, request: IdentityRequest) -> ProvisionedIdentity:
        """Create the login identity or raise ProvisioningError."""

    async def delete_identity(self, auth_id: str) -> None:
        """Remove an identity created by ``create_identity``; unknown ids are ignored."""


class LocalIdentityProvisioner:
    """Identities live in ``user_profiles``; issue a temporary password."""

    async def create_identity(self, request: IdentityRequest) -> ProvisionedIdentity:
        temp_password = generate_temporary_password()
        return ProvisionedIdentity(
            auth_id=f"local:{uuid.uuid4()}",
            hashed_password=get_password_hash(temp_password),
            secrets={"temporary_password": temp_password},
        )

    async def delete_identity(self, auth_id: str) -> None:
        # The password hash lives on the user row, which the caller discards
        return None


class SupabaseIdentityProvisioner:
    """Creates users through the GoTrue admin API with the service role key."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }

    async def create_identity(self, request: IdentityRequest) -> ProvisionedIdentity:
        body: dict[str, Any] = {
            "email": request.email,
            "email_confirm": True,
            "user_metadata": {
                "first_name": request.first_name,
                "last_name": request.last_name,
                "phone": request.phone_number,
            },
        }
        if request.phone_number:
            body["phone"] = request.phone_number
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/auth/v1/admin/users", headers=self._headers(), json=body
                )
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request failed: %s", exc.__class__.__name__)
            raise ProvisioningError(PROVIDER_UNAVAILABLE, "Identity provider is unavailable") from exc

        if response.status_code >= 400:
            raise self._map_error(response)
        data = response.json()
        auth_id = data.get("id") or (data.get("user") or {}).get("id")
        if not auth_id:
            raise ProvisioningError(PROVIDER_ERROR, "Identity provider returned no user id")
        return ProvisionedIdentity(auth_id=str(auth_id))

    async def delete_identity(self, auth_id: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.delete(
                    f"{self.base_url}/auth/v1/admin/users/{auth_id}", headers=self._headers()
                )
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request failed: %s", exc.__class__.__name__)
            raise ProvisioningError(PROVIDER_UNAVAILABLE, "Identity provider is unavailable") from exc
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise self._map_error(response)

    @staticmethod
    def _map_error(response: httpx.Response) -> ProvisioningError:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        error_code = str(payload.get("error_code") or payload.get("code") or "")
        message = str(payload.get("msg") or payload.get("message") or payload.get("error_description") or "")
        lowered = message.lower()
        if error_code == "phone_exists":
            return ProvisioningError(PHONE_EXISTS, "Phone number is already registered", field="phone_number")
        if error_code == "email_exists" or "already been registered" in lowered or "already exists" in lowered:
            return ProvisioningError(IDENTITY_EXISTS, "A user with this email already exists", field="email")
        logger.warning(
            "Identity provider rejected request",
            extra={"provider_status": response.status_code, "provider_code": error_code},
        )
        return ProvisioningError(PROVIDER_ERROR, message or "Identity provider rejected the request")


def get_identity_provisioner(config: Settings | None = None) -> IdentityProvisioner:
    config = config or settings
    if config.identity_provider == "supabase":
        if not config.supabase_url or not config.supabase_service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for supabase provisioning")
        return SupabaseIdentityProvisioner(
            config.supabase_url,
            config.supabase_service_role_key,
            timeout=config.provisioning_timeout_seconds,
        )
    return LocalIdentityProvisioner()
