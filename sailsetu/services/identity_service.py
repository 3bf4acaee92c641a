"""
sailsetu/services/identity_service.py

Purpose: Chat user -> SailPoint identity resolution

- Runs the LookupIdentityByPhone workflow for a phone number / chat id
- Parses identity name, display name and capability list
- Applies the result to a UserSession
"""

from dataclasses import dataclass, field
from typing import List, Optional

from sailsetu.core.logging import get_logger
from sailsetu.flow.states import UserSession
from sailsetu.schemas.sailpoint import SailPointConfig, parse_json_value, is_true
from sailsetu.services.sailpoint_service import SailPointService

logger = get_logger(__name__)

LOOKUP_WORKFLOW = "LookupIdentityByPhone"


@dataclass
class ResolvedIdentity:
    identity_name: Optional[str]
    display_name: Optional[str]
    capabilities: List[str] = field(default_factory=list)


class IdentityService:
    """
    Resolves chat users against IdentityIQ.
    """

    def __init__(self, gateway: SailPointService, default_capabilities: Optional[List[str]] = None):
        self.gateway = gateway
        # Used when the backend returns an undecodable capability list
        self.default_capabilities = list(default_capabilities or [])

    async def resolve(self, phone_number: str, config: Optional[SailPointConfig]) -> Optional[ResolvedIdentity]:
        """
        Looks up the identity linked to a phone number.

        Args:
            phone_number: Phone number or chat id
            config: Backend credentials

        Returns:
            ResolvedIdentity, or None when unmapped or the lookup failed
        """
        if not config:
            logger.debug("No SailPoint config - skipping identity lookup")
            return None

        try:
            result = await self.gateway.launch_workflow(LOOKUP_WORKFLOW, {"phoneNumber": phone_number}, config)
        except Exception as e:
            logger.error(f"Identity lookup failed for {phone_number}: {e}")
            return None

        if not result.success:
            logger.error(f"Identity lookup workflow reported failure for {phone_number}")
            return None

        if not is_true(result.attribute("found")):
            logger.info(f"⚠️ {phone_number} is not mapped to any identity")
            return None

        raw_capabilities = result.attribute("capabilities")
        capabilities = parse_json_value(raw_capabilities, None) if raw_capabilities else None
        if not isinstance(capabilities, list):
            if raw_capabilities:
                logger.warning(f"Could not decode capabilities for {phone_number}: {raw_capabilities!r}")
            capabilities = list(self.default_capabilities)

        identity = ResolvedIdentity(
            identity_name=result.attribute("identityName"),
            display_name=result.attribute("displayName"),
            capabilities=[str(c) for c in capabilities],
        )
        logger.info(
            f"✅ Identified {identity.display_name} ({identity.identity_name}) - capabilities: {identity.capabilities}"
        )
        return identity

    async def identify_session(self, session: UserSession, phone_number: str, config: Optional[SailPointConfig]) -> bool:
        """
        Resolves and stores the identity on a session.

        Returns:
            True if the session is now identified
        """
        identity = await self.resolve(phone_number, config)
        if identity is None:
            session.identified_user = None
            return False

        session.identified_user = identity.identity_name
        session.display_name = identity.display_name
        session.capabilities = identity.capabilities
        return bool(session.identified_user)
