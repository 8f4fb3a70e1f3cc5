import json

import httpx
import pytest

from lendsafe.core.security import verify_password
from lendsafe.core.settings import settings
from lendsafe.services.provisioning import (
    IDENTITY_EXISTS,
    PHONE_EXISTS,
    PROVIDER_ERROR,
    PROVIDER_UNAVAILABLE,
    IdentityRequest,
    LocalIdentityProvisioner,
    ProvisioningError,
    SupabaseIdentityProvisioner,
    get_identity_provisioner,
)

REQUEST = IdentityRequest(email="a@x.com", first_name="Ada", last_name="Lovelace", phone_number="0123456789")


def _provisioner(handler) -> SupabaseIdentityProvisioner:
    return SupabaseIdentityProvisioner(
        "https://project.supabase.co/",
        "service-role-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_local_provisioner_issues_temporary_password():
    identity = await LocalIdentityProvisioner().create_identity(REQUEST)

    password = identity.secrets["temporary_password"]
    assert identity.auth_id.startswith("local:")
    assert len(password) >= settings.password_min_length
    assert verify_password(password, identity.hashed_password)


@pytest.mark.asyncio
async def test_supabase_provisioner_creates_user():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "11111111-2222-3333-4444-555555555555"})

    identity = await _provisioner(handler).create_identity(REQUEST)

    assert identity.auth_id == "11111111-2222-3333-4444-555555555555"
    assert identity.hashed_password is None
    assert identity.secrets == {}
    assert seen["url"] == "https://project.supabase.co/auth/v1/admin/users"
    assert seen["auth"] == "Bearer service-role-key"
    assert seen["apikey"] == "service-role-key"
    assert seen["body"]["email"] == "a@x.com"
    assert seen["body"]["email_confirm"] is True
    assert seen["body"]["phone"] == "0123456789"
    assert seen["body"]["user_metadata"]["first_name"] == "Ada"


@pytest.mark.asyncio
async def test_supabase_nested_user_id():
    def handler(request):
        return httpx.Response(200, json={"user": {"id": "abc"}})

    identity = await _provisioner(handler).create_identity(REQUEST)
    assert identity.auth_id == "abc"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, code, field",
    [
        (422, {"error_code": "email_exists", "msg": "Email exists"}, IDENTITY_EXISTS, "email"),
        (422, {"msg": "A user with this email address has already been registered"}, IDENTITY_EXISTS, "email"),
        (422, {"error_code": "phone_exists", "msg": "Phone exists"}, PHONE_EXISTS, "phone_number"),
        (400, {"msg": "Signups not allowed"}, PROVIDER_ERROR, None),
        (500, {}, PROVIDER_ERROR, None),
    ],
)
async def test_supabase_error_mapping(status, body, code, field):
    def handler(request):
        return httpx.Response(status, json=body)

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(handler).create_identity(REQUEST)

    assert exc_info.value.code == code
    assert exc_info.value.field == field


@pytest.mark.asyncio
async def test_supabase_non_json_error():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(handler).create_identity(REQUEST)
    assert exc_info.value.code == PROVIDER_ERROR


@pytest.mark.asyncio
async def test_supabase_missing_user_id():
    def handler(request):
        return httpx.Response(200, json={})

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(handler).create_identity(REQUEST)
    assert exc_info.value.code == PROVIDER_ERROR


@pytest.mark.asyncio
async def test_supabase_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(handler).create_identity(REQUEST)
    assert exc_info.value.code == PROVIDER_UNAVAILABLE


@pytest.mark.asyncio
async def test_local_delete_identity_is_a_no_op():
    assert await LocalIdentityProvisioner().delete_identity("local:abc") is None


@pytest.mark.asyncio
async def test_supabase_delete_identity():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={})

    await _provisioner(handler).delete_identity("abc")

    assert seen == {
        "method": "DELETE",
        "url": "https://project.supabase.co/auth/v1/admin/users/abc",
        "auth": "Bearer service-role-key",
    }


@pytest.mark.asyncio
async def test_supabase_delete_of_missing_identity_is_ignored():
    def handler(request):
        return httpx.Response(404, json={"msg": "User not found"})

    await _provisioner(handler).delete_identity("gone")


@pytest.mark.asyncio
async def test_supabase_delete_errors_are_mapped():
    def failing(request):
        return httpx.Response(500, json={"msg": "database error"})

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(failing).delete_identity("abc")
    assert exc_info.value.code == PROVIDER_ERROR

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner(unreachable).delete_identity("abc")
    assert exc_info.value.code == PROVIDER_UNAVAILABLE

def test_factory_selects_provider():
    local = settings.model_copy(update={"identity_provider": "local"})
    assert isinstance(get_identity_provisioner(local), LocalIdentityProvisioner)

    remote = settings.model_copy(
        update={
            "identity_provider": "supabase",
            "supabase_url": "https://project.supabase.co",
            "supabase_service_role_key": "key",
            "provisioning_timeout_seconds": 3.0,
        }
    )
    provisioner = get_identity_provisioner(remote)
    assert isinstance(provisioner, SupabaseIdentityProvisioner)
    assert provisioner.timeout == 3.0

    incomplete = settings.model_copy(update={"identity_provider": "supabase", "supabase_url": None})
    with pytest.raises(RuntimeError):
        get_identity_provisioner(incomplete)
