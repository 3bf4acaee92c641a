import asyncio

import pytest

from helpers import CONFIG, RecordingTransport, make_engine, scripted_gateway
from sailsetu.channels.base import InboundMessage
from sailsetu.core.exceptions import WorkflowLaunchError
from sailsetu.flow.dispatcher import DialogEngine, feature_allowed
from sailsetu.flow.registry import Feature, FeatureRegistry
from sailsetu.flow.states import AwaitingMenuChoice, Idle, InFeature, UserSession
from sailsetu.services.sailpoint_service import BackendConfigStore
from utils.constants import (
    CONFIG_MISSING_MESSAGE,
    FEATURE_NOT_FOUND_MESSAGE,
    INVALID_SELECTION_MESSAGE,
    NO_FEATURES_MESSAGE,
    STILL_WORKING_MESSAGE,
)


class CountingFeature(Feature):
    id = "counter"
    name = "Counter"
    required_capability = None

    def __init__(self, fail_with=None, delay=0.0):
        self.selected = 0
        self.handled = []
        self.fail_with = fail_with
        self.delay = delay

    async def on_select(self, ctx):
        self.selected += 1
        ctx.session.data = {"count": 0}
        await ctx.reply("BOT: counting")

    async def handler(self, ctx, text):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.handled.append(text)
        ctx.data["count"] += 1


def context_for(engine, session, transport, text):
    msg = InboundMessage(channel="test", chat_id="chat-1", text=text, sender_phone="15550001")
    return engine.build_context(msg, session, transport)


def single_feature_engine(feature, config=CONFIG, **options):
    registry = FeatureRegistry()
    registry.register(feature)
    options.setdefault("slow_notice_seconds", 0)
    options.setdefault("master_capability", "sailsetu-master")
    return DialogEngine(registry, scripted_gateway(), BackendConfigStore(config), idle_step=AwaitingMenuChoice, **options)


class Restricted(Feature):
    id = "restricted"
    name = "Restricted"
    required_capability = "Admin"

    async def on_select(self, ctx):
        pass

    async def handler(self, ctx, text):
        pass


@pytest.mark.parametrize(
    "required, capabilities, expected",
    [
        (None, [], True),
        ("*", [], True),
        ("Admin", [], False),
        ("Admin", ["Admin"], True),
        ("Admin", ["Reviewer"], False),
        ("Admin", ["sailsetu-master"], True),
    ],
)
def test_feature_allowed(required, capabilities, expected):
    feature = Restricted()
    feature.required_capability = required
    assert feature_allowed(feature, capabilities, "sailsetu-master") is expected


def test_filter_keeps_registration_order():
    engine = make_engine()
    session = UserSession(capabilities=["Admin"])
    assert [f.id for f in engine.filter_features(session)] == [
        "verify-identity",
        "leaver-cleanup",
        "manage-access",
    ]

    master = UserSession(capabilities=["sailsetu-master"])
    assert len(engine.filter_features(master)) == 5


@pytest.mark.asyncio
async def test_menu_lists_visible_features_and_waits_for_choice():
    engine = make_engine()
    transport = RecordingTransport()
    session = UserSession(capabilities=[])
    ctx = context_for(engine, session, transport, "!menu")

    await engine.send_main_menu(ctx)

    assert session.step == AwaitingMenuChoice(("verify-identity", "manage-access"))
    assert "1️⃣ *Link Chat Account*" in transport.last
    assert "2️⃣ *Manage User Access*" in transport.last
    assert "Leaver" not in transport.last


@pytest.mark.asyncio
async def test_menu_prefers_poll_when_available():
    engine = make_engine(use_polls=True)
    transport = RecordingTransport(polls_supported=True)
    session = UserSession(capabilities=["sailsetu-master"])

    await engine.send_main_menu(context_for(engine, session, transport, "!tools"))

    assert transport.polls[0]["options"][0] == "Link Chat Account"
    assert len(transport.polls[0]["options"]) == 5
    assert transport.sent == []


@pytest.mark.asyncio
async def test_menu_poll_falls_back_to_text():
    engine = make_engine(use_polls=True)
    transport = RecordingTransport(polls_supported=False)

    await engine.send_main_menu(context_for(engine, UserSession(), transport, "!tools"))

    assert "Reply with a number" in transport.last


@pytest.mark.asyncio
async def test_empty_menu_leaves_step_unchanged():
    registry = FeatureRegistry()
    registry.register(Restricted())
    engine = DialogEngine(registry, scripted_gateway(), BackendConfigStore(CONFIG), idle_step=Idle, slow_notice_seconds=0)
    transport = RecordingTransport()
    session = UserSession()

    await engine.send_main_menu(context_for(engine, session, transport, "hi"))

    assert transport.sent == [NO_FEATURES_MESSAGE]
    assert session.step == Idle()


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", ["0", "3", "abc", "-1", ""])
async def test_out_of_range_selection_keeps_menu(reply):
    engine = make_engine()
    transport = RecordingTransport()
    session = UserSession(capabilities=[])
    await engine.send_main_menu(context_for(engine, session, transport, "!menu"))

    await engine.dispatch(context_for(engine, session, transport, reply), reply)

    assert transport.last == INVALID_SELECTION_MESSAGE
    assert isinstance(session.step, AwaitingMenuChoice)


@pytest.mark.asyncio
async def test_numeric_selection_enters_feature():
    engine = make_engine()
    transport = RecordingTransport()
    session = UserSession(capabilities=[])
    await engine.send_main_menu(context_for(engine, session, transport, "!menu"))

    await engine.dispatch(context_for(engine, session, transport, "1"), "1")

    assert session.step == InFeature("verify-identity")
    assert session.data["internal_step"] == "ASK_USERNAME"
    assert "Identity Verification" in transport.last


@pytest.mark.asyncio
async def test_selection_by_name_and_id():
    engine = make_engine()
    transport = RecordingTransport()

    by_name = UserSession(step=AwaitingMenuChoice(), capabilities=[])
    await engine.dispatch(context_for(engine, by_name, transport, "Manage User Access"), "Manage User Access")
    assert by_name.step == InFeature("manage-access")

    by_id = UserSession(step=AwaitingMenuChoice(), capabilities=[])
    await engine.dispatch(context_for(engine, by_id, transport, "verify-identity"), "verify-identity")
    assert by_id.step == InFeature("verify-identity")


@pytest.mark.asyncio
async def test_names_ignored_when_numeric_only():
    engine = make_engine(allow_names=False)
    transport = RecordingTransport()
    session = UserSession(step=AwaitingMenuChoice(), capabilities=[])

    await engine.dispatch(context_for(engine, session, transport, "Manage User Access"), "Manage User Access")

    assert transport.last == INVALID_SELECTION_MESSAGE
    assert isinstance(session.step, AwaitingMenuChoice)


@pytest.mark.asyncio
async def test_selection_uses_menu_snapshot():
    engine = make_engine()
    transport = RecordingTransport()
    session = UserSession(capabilities=[])
    await engine.send_main_menu(context_for(engine, session, transport, "!menu"))

    # Capabilities change after the menu was shown; the numbers still mean what was displayed
    session.capabilities = ["sailsetu-master"]
    await engine.dispatch(context_for(engine, session, transport, "2"), "2")

    assert session.step == InFeature("manage-access")


@pytest.mark.asyncio
async def test_config_guard_blocks_selection():
    engine = make_engine(config=None)
    transport = RecordingTransport()
    session = UserSession(step=AwaitingMenuChoice(), capabilities=[])

    await engine.dispatch(context_for(engine, session, transport, "1"), "1")

    assert transport.last == CONFIG_MISSING_MESSAGE
    assert session.step == AwaitingMenuChoice()
    assert session.data == {}


@pytest.mark.asyncio
async def test_config_free_feature_runs_without_config():
    engine = make_engine(config=None)
    transport = RecordingTransport()
    session = UserSession(step=AwaitingMenuChoice(), capabilities=["sailsetu-master"])

    await engine.dispatch(context_for(engine, session, transport, "System Status"), "System Status")

    assert "Disconnected" in transport.last
    assert session.step == AwaitingMenuChoice()


@pytest.mark.asyncio
async def test_config_guard_blocks_feature_turn():
    engine = make_engine(config=None)
    transport = RecordingTransport()
    session = UserSession(step=InFeature("manage-access"), data={"internal_step": "SEARCH_USER"})

    await engine.dispatch(context_for(engine, session, transport, "alice"), "alice")

    assert transport.last == CONFIG_MISSING_MESSAGE
    assert session.step == AwaitingMenuChoice()


@pytest.mark.asyncio
async def test_unknown_active_feature_resets():
    engine = make_engine()
    transport = RecordingTransport()
    session = UserSession(step=InFeature("gone"), data={"x": 1})

    await engine.dispatch(context_for(engine, session, transport, "hello"), "hello")

    assert transport.last == FEATURE_NOT_FOUND_MESSAGE
    assert session.step == AwaitingMenuChoice()
    assert session.data == {}


@pytest.mark.asyncio
async def test_feature_turn_reaches_handler():
    feature = CountingFeature()
    engine = single_feature_engine(feature)
    transport = RecordingTransport()
    session = UserSession(step=AwaitingMenuChoice())

    await engine.dispatch(context_for(engine, session, transport, "1"), "1")
    await engine.dispatch(context_for(engine, session, transport, "a"), "a")
    await engine.dispatch(context_for(engine, session, transport, "b"), "b")

    assert feature.selected == 1
    assert feature.handled == ["a", "b"]
    assert session.data["count"] == 2


@pytest.mark.asyncio
async def test_reselecting_restarts_feature_state():
    feature = CountingFeature()
    engine = single_feature_engine(feature)
    transport = RecordingTransport()
    session = UserSession(step=AwaitingMenuChoice())

    await engine.dispatch(context_for(engine, session, transport, "Counter"), "Counter")
    await engine.dispatch(context_for(engine, session, transport, "a"), "a")
    engine_ctx = context_for(engine, session, transport, "!menu")
    engine_ctx.reset_session()
    await engine.dispatch(context_for(engine, session, transport, "Counter"), "Counter")

    assert feature.selected == 2
    assert session.data == {"count": 0}


@pytest.mark.asyncio
async def test_handler_error_is_reported_and_resets():
    feature = CountingFeature(fail_with=WorkflowLaunchError("SailPoint Error 500: boom"))
    engine = single_feature_engine(feature)
    transport = RecordingTransport()
    session = UserSession(step=InFeature("counter"), data={"count": 0})

    await engine.dispatch(context_for(engine, session, transport, "x"), "x")

    assert transport.last == "BOT: ❌ Error: SailPoint Error 500: boom"
    assert session.step == AwaitingMenuChoice()
    assert session.data == {}


@pytest.mark.asyncio
async def test_plain_exception_message_is_reported():
    feature = CountingFeature(fail_with=RuntimeError("bad state"))
    engine = single_feature_engine(feature)
    transport = RecordingTransport()
    session = UserSession(step=InFeature("counter"), data={"count": 0})

    await engine.dispatch(context_for(engine, session, transport, "x"), "x")

    assert transport.last == "BOT: ❌ Error: bad state"


@pytest.mark.asyncio
async def test_idle_step_uses_fallback():
    engine = make_engine(idle_step=Idle)
    transport = RecordingTransport()
    session = UserSession()
    seen = []

    async def fallback(ctx, text):
        seen.append(text)

    await engine.dispatch(context_for(engine, session, transport, "hello"), "hello", fallback=fallback)
    await engine.dispatch(context_for(engine, session, transport, "again"), "again")

    assert seen == ["hello"]
    assert transport.sent == []


@pytest.mark.asyncio
async def test_slow_turn_sends_single_notice():
    feature = CountingFeature(delay=0.2)
    engine = single_feature_engine(feature, slow_notice_seconds=0.05)
    transport = RecordingTransport()
    session = UserSession(step=InFeature("counter"), data={"count": 0})

    await engine.dispatch(context_for(engine, session, transport, "x"), "x")

    assert transport.sent.count(STILL_WORKING_MESSAGE) == 1
    assert feature.handled == ["x"]


@pytest.mark.asyncio
async def test_fast_turn_sends_no_notice():
    feature = CountingFeature()
    engine = single_feature_engine(feature, slow_notice_seconds=5)
    transport = RecordingTransport()
    session = UserSession(step=InFeature("counter"), data={"count": 0})

    await engine.dispatch(context_for(engine, session, transport, "x"), "x")

    assert STILL_WORKING_MESSAGE not in transport.sent
