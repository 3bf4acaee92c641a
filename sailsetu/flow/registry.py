"""
sailsetu/flow/registry.py

Purpose: Pluggable feature catalog and the per-message bot context

- Feature: a self-contained dialog with on_select / handler entry points
- FeatureRegistry: id -> Feature, in registration order
- BotContext: what a feature may touch while handling one message
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from sailsetu.channels.base import ChannelTransport, InboundMessage
from sailsetu.core.exceptions import DuplicateFeatureError, FeatureNotFoundError
from sailsetu.core.logging import get_logger
from sailsetu.flow.states import Step, UserSession
from sailsetu.schemas.sailpoint import SailPointConfig, LaunchResponse

if TYPE_CHECKING:
    from sailsetu.services.sailpoint_service import SailPointService, WorkflowInput

logger = get_logger(__name__)


@dataclass
class BotContext:
    """
    Built fresh for every incoming message; never stored.
    """
    channel: str
    msg: InboundMessage
    session: UserSession
    config: Optional[SailPointConfig]
    transport: ChannelTransport
    gateway: "SailPointService"
    idle_step: Callable[[], Step]

    async def reply(self, text: str) -> None:
        await self.transport.reply(self.msg, text)

    async def send_poll(self, question: str, options: List[str], allow_multiple: bool = False) -> bool:
        """Returns False when no poll went out and the caller should send a text list."""
        return await self.transport.send_poll(self.msg, question, options, allow_multiple)

    def reset_session(self) -> None:
        self.session.reset(self.idle_step())

    async def launch_workflow(self, workflow_name: str, inputs: "WorkflowInput") -> LaunchResponse:
        return await self.gateway.launch_workflow(workflow_name, inputs, self.config)

    async def download_media(self) -> Optional[bytes]:
        return await self.transport.download_media(self.msg)

    @property
    def data(self) -> dict:
        return self.session.data


class Feature(ABC):
    """
    A conversational dialog pluggable into the dialog engine.

    required_capability: None or "*" means any caller; otherwise the user
    must hold that capability (or the master capability).
    """
    id: str = ""
    name: str = ""
    description: str = ""
    required_capability: Optional[str] = None

    @abstractmethod
    async def on_select(self, ctx: BotContext) -> None:
        """Called when the user picks the feature from the menu."""
        ...

    @abstractmethod
    async def handler(self, ctx: BotContext, text: str) -> None:
        """Called for every message while the feature owns the session."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"


class FeatureRegistry:
    """
    Catalog of features. Built once at startup and injected into each channel.
    """

    def __init__(self):
        self._features: Dict[str, Feature] = {}

    def register(self, feature: Feature, replace: bool = False) -> None:
        """
        Adds a feature.

        Args:
            feature: Feature instance
            replace: Allow superseding an existing feature with the same id

        Raises:
            DuplicateFeatureError: If the id is taken and replace is False
        """
        if feature.id in self._features and not replace:
            raise DuplicateFeatureError(f"Feature '{feature.id}' is already registered")

        # Superseding keeps the original menu position
        self._features[feature.id] = feature
        logger.info(f"📦 Registered feature: {feature.name} ({feature.id})")

    def get(self, feature_id: str) -> Optional[Feature]:
        return self._features.get(feature_id)

    def require(self, feature_id: str) -> Feature:
        """
        Like get(), but a missing id is an error.

        Raises:
            FeatureNotFoundError: If no feature has this id
        """
        feature = self._features.get(feature_id)
        if feature is None:
            raise FeatureNotFoundError(f"Feature '{feature_id}' not found", details={"feature_id": feature_id})
        return feature

    def get_all(self) -> List[Feature]:
        return list(self._features.values())

    def __contains__(self, feature_id: str) -> bool:
        return feature_id in self._features

    def __len__(self) -> int:
        return len(self._features)
