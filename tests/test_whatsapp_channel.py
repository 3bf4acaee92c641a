import asyncio
import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from helpers import CONFIG, attrs, launched, scripted_gateway
from sailsetu.flow.catalog import build_registry
from sailsetu.flow.states import AwaitingMenuChoice, InFeature
from sailsetu.schemas.sailpoint import LaunchResponse
from sailsetu.channels.whatsapp import STATUS_INITIALIZING, STATUS_READY, WhatsAppChannel
from sailsetu.schemas.whatsapp import BridgeEvent, phone_from_chat_id
from sailsetu.services.sailpoint_service import BackendConfigStore
from sailsetu.services.whatsapp_bridge import WhatsAppBridgeClient
from utils.constants import (
    MENU_LOADING_MESSAGE,
    PONG_MESSAGE,
    SESSION_PAUSED_MESSAGE,
    WAKE_MESSAGE,
    WHATSAPP_WELCOME_MESSAGE,
)

OWNER = "15550001@c.us"
OTHER = "15559999@c.us"


class FakeBridge:
    """Records every request the bridge client makes."""

    def __init__(self, fail_quoted=False, fail_polls=False, media=None):
        self.requests = []
        self.fail_quoted = fail_quoted
        self.fail_polls = fail_polls
        self.media = media

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers.get("X-Bridge-Token")))

        if request.url.path == "/messages":
            if self.fail_quoted and body.get("quotedMessageId"):
                return httpx.Response(500, text="quote failed")
            return httpx.Response(200, json={"id": "out-1"})
        if request.url.path == "/polls":
            if self.fail_polls:
                return httpx.Response(500, text="polls unsupported")
            return httpx.Response(200, json={"id": "poll-1"})
        if request.url.path.endswith("/media"):
            if self.media is None:
                return httpx.Response(200, json={})
            return httpx.Response(200, json={"mimetype": "text/csv", "data": base64.b64encode(self.media).decode()})
        return httpx.Response(200, json={})

    @property
    def texts(self):
        return [body["text"] for _, path, body, _ in self.requests if path == "/messages"]

    @property
    def polls(self):
        return [body for _, path, body, _ in self.requests if path == "/polls"]


def build_channel(fake=None, gateway=None, config=CONFIG, use_polls=False):
    fake = fake or FakeBridge()
    bridge = WhatsAppBridgeClient(base_url="http://bridge", token="secret", transport=httpx.MockTransport(fake.handler))
    gateway = gateway or scripted_gateway({"LookupIdentityByPhone": attrs(found="false")})
    channel = WhatsAppChannel(
        build_registry(),
        gateway,
        BackendConfigStore(config),
        bridge,
        reply_delay=0,
        use_polls=use_polls,
    )
    channel.engine.slow_notice_seconds = 0
    return channel, fake


def note_to_self(body, sender=OWNER, to=None, from_me=True, msg_id="m-1", **extra):
    data = {"id": msg_id, "from": sender, "to": to or sender, "body": body, "fromMe": from_me}
    data.update(extra)
    return BridgeEvent(event="message_create", data=data)


def test_phone_from_chat_id():
    assert phone_from_chat_id("919063248559@c.us") == "919063248559"
    assert phone_from_chat_id("4915@s.whatsapp.net") == "4915"


@pytest.mark.asyncio
async def test_ping_is_answered():
    channel, fake = build_channel()
    await channel.handle_event(note_to_self("!ping"))
    assert fake.texts == [PONG_MESSAGE]
    assert fake.requests[0][3] == "secret"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event",
    [
        note_to_self("!ping", from_me=False),
        note_to_self("!ping", to=OTHER),
        note_to_self("!ping", isStatus=True),
        note_to_self("BOT: 🏓 Pong!"),
        note_to_self("📋 menu echo"),
        note_to_self("🤔 Decision for: *memberOf: CN=Staff*\nIdentity: bob"),
        note_to_self("just a note"),
    ],
)
async def test_messages_not_admitted(event):
    channel, fake = build_channel()
    await channel.handle_event(event)
    assert fake.requests == []
    assert len(channel.sessions) == 0


@pytest.mark.asyncio
async def test_menu_then_numeric_selection():
    channel, fake = build_channel()

    await channel.handle_event(note_to_self("!menu"))
    assert fake.texts[0] == MENU_LOADING_MESSAGE
    assert "1️⃣ *Link Chat Account*" in fake.texts[1]

    # Plain text is admitted once a session exists
    await channel.handle_event(note_to_self("1", msg_id="m-2"))

    session = channel.sessions.get(OWNER)
    assert session.step == InFeature("verify-identity")
    assert "Identity Verification" in fake.texts[-1]


@pytest.mark.asyncio
async def test_replies_quote_inbound_message():
    channel, fake = build_channel()
    await channel.handle_event(note_to_self("!menu", msg_id="m-42"))

    bodies = [body for _, path, body, _ in fake.requests if path == "/messages"]
    assert all(body["quotedMessageId"] == "m-42" for body in bodies)


@pytest.mark.asyncio
async def test_quote_failure_falls_back_to_plain_send():
    channel, fake = build_channel(FakeBridge(fail_quoted=True))
    await channel.handle_event(note_to_self("!menu"))

    delivered = [body for _, path, body, _ in fake.requests if path == "/messages" and "quotedMessageId" not in body]
    assert delivered[0]["text"] == MENU_LOADING_MESSAGE
    assert len(delivered) == 2


@pytest.mark.asyncio
async def test_sleep_and_wake():
    channel, fake = build_channel()
    await channel.handle_event(note_to_self("!ping"))

    await channel.handle_event(note_to_self("bye"))
    assert fake.texts[-1] == SESSION_PAUSED_MESSAGE
    assert channel.sessions.get(OWNER).is_active is False

    sent_before = len(fake.texts)
    await channel.handle_event(note_to_self("!ping"))
    await channel.handle_event(note_to_self("!menu"))
    assert len(fake.texts) == sent_before

    await channel.handle_event(note_to_self("Hi SailSetu!"))
    assert fake.texts[sent_before] == WAKE_MESSAGE
    assert channel.sessions.get(OWNER).is_active is True
    assert isinstance(channel.sessions.get(OWNER).step, AwaitingMenuChoice)


@pytest.mark.asyncio
async def test_identity_is_resolved_from_phone():
    gateway = scripted_gateway({
        "LookupIdentityByPhone": attrs(found="true", identityName="alice", displayName="Alice", capabilities='["Admin"]'),
    })
    channel, fake = build_channel(gateway=gateway)

    await channel.handle_event(note_to_self("!menu"))

    assert launched(gateway, "LookupIdentityByPhone")[0] == {"phoneNumber": "15550001"}
    assert channel.sessions.get(OWNER).identified_user == "alice"
    assert "Leaver Cleanup" in fake.texts[-1]


@pytest.mark.asyncio
async def test_poll_menu_and_vote():
    channel, fake = build_channel(use_polls=True)
    await channel.handle_event(BridgeEvent(event="ready", data={"wid": OWNER}))
    assert fake.texts == [WHATSAPP_WELCOME_MESSAGE]

    await channel.handle_event(note_to_self("!tools"))
    assert fake.polls[0]["options"] == ["Link Chat Account", "Manage User Access"]
    assert fake.polls[0]["allowMultipleAnswers"] is False

    await channel.handle_event(BridgeEvent(event="vote_update", data={
        "voter": OWNER,
        "selectedOptions": [{"name": "Manage User Access", "localId": 1}],
        "parentMessage": {"id": "poll-1", "from": OWNER, "to": OWNER},
    }))

    assert channel.sessions.get(OWNER).step == InFeature("manage-access")


@pytest.mark.asyncio
async def test_textmenu_skips_poll():
    channel, fake = build_channel(use_polls=True)
    await channel.handle_event(note_to_self("!textmenu"))
    assert fake.polls == []
    assert "Reply with a number" in fake.texts[-1]


@pytest.mark.asyncio
async def test_poll_failure_falls_back_to_text():
    channel, fake = build_channel(FakeBridge(fail_polls=True), use_polls=True)
    await channel.handle_event(note_to_self("!menu"))
    assert "Reply with a number" in fake.texts[-1]


@pytest.mark.asyncio
async def test_votes_from_other_people_are_ignored():
    channel, fake = build_channel(use_polls=True)
    await channel.handle_event(BridgeEvent(event="ready", data={"wid": OWNER}))
    await channel.handle_event(note_to_self("!menu"))
    requests_before = len(fake.requests)

    await channel.handle_event(BridgeEvent(event="vote_update", data={
        "voter": OTHER,
        "selectedOptions": [{"name": "Manage User Access"}],
        "parentMessage": {"id": "poll-1", "from": OWNER, "to": OWNER},
    }))

    assert len(fake.requests) == requests_before
    assert channel.sessions.get(OTHER) is None


@pytest.mark.asyncio
async def test_connection_status_updates():
    channel, _ = build_channel()
    queue = channel.subscribe()
    assert queue.get_nowait()["status"] == "disconnected"

    await channel.handle_event(BridgeEvent(event="qr", data={"qr": "2@abc"}))
    status = queue.get_nowait()
    assert status == {"status": STATUS_INITIALIZING, "qrCode": "2@abc", "hasConfig": True}

    await channel.handle_event(BridgeEvent(event="ready", data={"wid": OWNER}))
    assert queue.get_nowait()["status"] == STATUS_READY
    assert channel.get_status()["qrCode"] is None

    channel.unsubscribe(queue)
    await channel.handle_event(BridgeEvent(event="disconnected", data={"reason": "LOGOUT"}))
    assert queue.empty()
    assert channel.status == "disconnected"


@pytest.mark.asyncio
async def test_logout_calls_bridge():
    channel, fake = build_channel()
    channel.status = STATUS_READY
    await channel.logout()
    assert ("POST", "/logout") in [(m, p) for m, p, _, _ in fake.requests]
    assert channel.status == "disconnected"


@pytest.mark.asyncio
async def test_media_download_through_bridge():
    channel, fake = build_channel(FakeBridge(media=b"identityName\nbob\n"))
    assert await channel.bridge.download_media("m-9") == b"identityName\nbob\n"
    assert fake.requests[-1][1] == "/messages/m-9/media"


@pytest.mark.asyncio
async def test_missing_config_blocks_features():
    channel, fake = build_channel(config=None)
    await channel.handle_event(note_to_self("!menu"))
    await channel.handle_event(note_to_self("1"))
    assert "Configuration Missing" in fake.texts[-1]
    assert channel.sessions.get(OWNER).step == AwaitingMenuChoice()


@pytest.mark.asyncio
async def test_overlapping_turns_for_one_chat_run_in_order():
    release = asyncio.Event()

    async def slow_lookup(workflow_name, inputs, config):
        await release.wait()
        return LaunchResponse(success=True, launch_result=attrs(found="false"))

    gateway = AsyncMock()
    gateway.launch_workflow = AsyncMock(side_effect=slow_lookup)
    channel, fake = build_channel(gateway=gateway)

    first = asyncio.create_task(channel.handle_event(note_to_self("!menu", msg_id="m-1")))
    await asyncio.sleep(0)
    second = asyncio.create_task(channel.handle_event(note_to_self("1", msg_id="m-2")))
    await asyncio.sleep(0)

    # The second turn waits for the first one's identity lookup
    assert fake.requests == []

    release.set()
    await asyncio.gather(first, second)

    assert fake.texts[0] == MENU_LOADING_MESSAGE
    assert "1️⃣ *Link Chat Account*" in fake.texts[1]
    assert "Identity Verification" in fake.texts[-1]
    assert channel.sessions.get(OWNER).step == InFeature("verify-identity")
