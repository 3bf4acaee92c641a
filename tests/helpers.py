"""
Test helpers: a recording chat transport, a scripted SailPoint gateway
and builders for sessions, contexts and engines.
"""

from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

from sailsetu.channels.base import ChannelTransport, InboundMessage
from sailsetu.core.exceptions import WorkflowLaunchError
from sailsetu.flow.catalog import build_registry
from sailsetu.flow.dispatcher import DialogEngine
from sailsetu.flow.registry import BotContext
from sailsetu.flow.states import AwaitingMenuChoice, Idle, Step, UserSession
from sailsetu.schemas.sailpoint import LaunchResponse, SailPointConfig
from sailsetu.services.sailpoint_service import BackendConfigStore

CONFIG = SailPointConfig(url="https://iiq.example.com/identityiq", username="spadmin", password="admin")


class RecordingTransport(ChannelTransport):
    """Collects everything the bot says."""

    def __init__(self, polls_supported: bool = False):
        self.sent: List[str] = []
        self.polls: List[Dict[str, Any]] = []
        self.polls_supported = polls_supported
        self.media: Optional[bytes] = None

    @property
    def channel_name(self) -> str:
        return "test"

    async def send_text(self, chat_id: str, text: str) -> None:
        self.sent.append(text)

    async def send_poll(self, msg, question, options, allow_multiple=False) -> bool:
        if not self.polls_supported:
            return False
        self.polls.append({"question": question, "options": list(options)})
        return True

    async def download_media(self, msg) -> Optional[bytes]:
        return self.media

    @property
    def last(self) -> str:
        return self.sent[-1] if self.sent else ""


def attrs(**values: Any) -> Dict[str, Any]:
    """Builds a TaskResult with the attributes list shape."""
    return {"id": "task-1", "attributes": [{"key": k, "value": v} for k, v in values.items()]}


def scripted_gateway(responses: Optional[Dict[str, Any]] = None) -> AsyncMock:
    """
    AsyncMock gateway answering launch_workflow by workflow name.

    A response may be a TaskResult dict, an exception instance, or a
    callable taking (inputs) and returning either.
    """
    responses = responses or {}

    async def launch(workflow_name, inputs, config):
        if workflow_name not in responses:
            raise WorkflowLaunchError(f"Unexpected workflow {workflow_name}")
        result = responses[workflow_name]
        if callable(result):
            result = result(inputs)
        if isinstance(result, Exception):
            raise result
        return LaunchResponse(success=True, launch_result=result)

    gateway = AsyncMock()
    gateway.launch_workflow = AsyncMock(side_effect=launch)
    return gateway


def launched(gateway: AsyncMock, workflow_name: str) -> List[Any]:
    """Inputs of every launch of a workflow, in order."""
    return [c.args[1] for c in gateway.launch_workflow.call_args_list if c.args[0] == workflow_name]


def input_value(inputs: Any, key: str) -> Any:
    if isinstance(inputs, list):
        return next((e["value"] for e in inputs if e["key"] == key), None)
    return inputs.get(key)


def make_context(
    session: Optional[UserSession] = None,
    gateway: Any = None,
    transport: Optional[RecordingTransport] = None,
    config: Optional[SailPointConfig] = CONFIG,
    text: str = "",
    idle_step: Callable[[], Step] = Idle,
    **msg_fields: Any,
) -> BotContext:
    return BotContext(
        channel="test",
        msg=InboundMessage(channel="test", chat_id="chat-1", text=text, sender_phone="15550001", **msg_fields),
        session=session or UserSession(),
        config=config,
        transport=transport or RecordingTransport(),
        gateway=gateway or scripted_gateway(),
        idle_step=idle_step,
    )


def make_engine(gateway: Any = None, config: Optional[SailPointConfig] = CONFIG, **options: Any) -> DialogEngine:
    options.setdefault("idle_step", AwaitingMenuChoice)
    options.setdefault("slow_notice_seconds", 0)
    options.setdefault("master_capability", "sailsetu-master")
    return DialogEngine(build_registry(), gateway or scripted_gateway(), BackendConfigStore(config), **options)


