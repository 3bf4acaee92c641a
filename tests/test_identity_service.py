import pytest

from helpers import CONFIG, attrs, input_value, launched, scripted_gateway
from sailsetu.core.exceptions import WorkflowLaunchError
from sailsetu.flow.states import UserSession
from sailsetu.services.identity_service import IdentityService


@pytest.mark.asyncio
async def test_resolves_mapped_identity():
    gateway = scripted_gateway({
        "LookupIdentityByPhone": attrs(
            found="true", identityName="alice", displayName="Alice Smith", capabilities='["Admin", "Reviewer"]'
        ),
    })
    service = IdentityService(gateway)

    identity = await service.resolve("15550001", CONFIG)

    assert identity.identity_name == "alice"
    assert identity.display_name == "Alice Smith"
    assert identity.capabilities == ["Admin", "Reviewer"]
    assert input_value(launched(gateway, "LookupIdentityByPhone")[0], "phoneNumber") == "15550001"


@pytest.mark.asyncio
async def test_unmapped_number_returns_none():
    gateway = scripted_gateway({"LookupIdentityByPhone": attrs(found="false")})
    assert await IdentityService(gateway).resolve("15550001", CONFIG) is None


@pytest.mark.asyncio
async def test_lookup_failure_returns_none():
    gateway = scripted_gateway({"LookupIdentityByPhone": WorkflowLaunchError("down")})
    assert await IdentityService(gateway).resolve("15550001", CONFIG) is None


@pytest.mark.asyncio
async def test_no_config_skips_lookup():
    gateway = scripted_gateway()
    assert await IdentityService(gateway).resolve("15550001", None) is None
    gateway.launch_workflow.assert_not_called()


@pytest.mark.asyncio
async def test_bad_capabilities_use_channel_default():
    gateway = scripted_gateway({
        "LookupIdentityByPhone": attrs(found=True, identityName="bob", capabilities="{broken"),
    })
    identity = await IdentityService(gateway, default_capabilities=["User"]).resolve("1", CONFIG)
    assert identity.capabilities == ["User"]


@pytest.mark.asyncio
async def test_identify_session_applies_result():
    gateway = scripted_gateway({
        "LookupIdentityByPhone": attrs(found="true", identityName="alice", displayName="Alice", capabilities='["Admin"]'),
    })
    session = UserSession()

    assert await IdentityService(gateway).identify_session(session, "1", CONFIG) is True
    assert session.identified_user == "alice"
    assert session.display_name == "Alice"
    assert session.capabilities == ["Admin"]


@pytest.mark.asyncio
async def test_identify_session_clears_unmapped_user():
    gateway = scripted_gateway({"LookupIdentityByPhone": attrs(found="false")})
    session = UserSession(identified_user="stale")

    assert await IdentityService(gateway).identify_session(session, "1", CONFIG) is False
    assert session.identified_user is None
