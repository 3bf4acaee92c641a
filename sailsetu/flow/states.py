"""
sailsetu/flow/states.py

Purpose: Defines top-level conversation states

- Step variants: Idle, AwaitingMenuChoice, InFeature
- UserSession record shared by every channel
- String labels matching the chat-side conventions ("start", "MENU", "FEATURE:<id>")
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Idle:
    """
    Nothing pending. Free text is ignored until a menu command arrives.
    """

    def __str__(self) -> str:
        return "start"


@dataclass(frozen=True)
class AwaitingMenuChoice:
    """
    The next reply picks a feature from the main menu.

    feature_ids is the menu that was last shown to the user, in display
    order. An empty tuple means no menu has been shown since the last reset
    and the capability-filtered list is computed on demand.
    """
    feature_ids: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return "MENU"


@dataclass(frozen=True)
class InFeature:
    """
    The session is owned by a feature; every reply goes to its handler.
    """
    feature_id: str

    def __str__(self) -> str:
        return f"FEATURE:{self.feature_id}"


Step = Union[Idle, AwaitingMenuChoice, InFeature]


@dataclass
class UserSession:
    """
    Per-user, per-channel conversational state. Lives in memory only.
    """
    step: Step = field(default_factory=Idle)
    data: Dict[str, Any] = field(default_factory=dict)
    last_active: float = field(default_factory=time.time)
    is_active: bool = True
    identified_user: Optional[str] = None
    display_name: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)

    @property
    def feature_id(self) -> Optional[str]:
        if isinstance(self.step, InFeature):
            return self.step.feature_id
        return None

    def in_feature(self, feature_id: str) -> bool:
        return self.feature_id == feature_id

    def reset(self, step: Step) -> None:
        """Return to a known-good step and drop all feature scratch data."""
        self.step = step
        self.data = {}

    def touch(self) -> None:
        self.last_active = time.time()

    def forget_identity(self) -> None:
        self.identified_user = None
        self.display_name = None
        self.capabilities = []
