from sailsetu.flow.states import AwaitingMenuChoice, Idle, InFeature, UserSession
from sailsetu.services.session_service import SessionStore


def test_get_or_create_reports_creation():
    store = SessionStore("telegram")

    session, created = store.get_or_create("1")
    again, created_again = store.get_or_create("1")

    assert created is True
    assert created_again is False
    assert session is again
    assert isinstance(session.step, Idle)


def test_sessions_are_isolated():
    store = SessionStore("telegram")
    a, _ = store.get_or_create("a")
    b, _ = store.get_or_create("b")

    a.step = InFeature("manage-access")
    a.data["target_user"] = "alice"

    assert isinstance(b.step, Idle)
    assert b.data == {}
    assert len(store) == 2


def test_reset_uses_channel_idle_step_and_clears_data():
    store = SessionStore("whatsapp", idle_step=AwaitingMenuChoice)
    session, _ = store.get_or_create("me@c.us")
    session.step = InFeature("leaver-cleanup")
    session.data = {"internal_step": "SELECT_USER", "leavers": [1, 2]}

    store.reset(session)

    assert session.step == AwaitingMenuChoice()
    assert session.data == {}


def test_lock_is_per_key():
    store = SessionStore("whatsapp")
    assert store.lock_for("a") is store.lock_for("a")
    assert store.lock_for("a") is not store.lock_for("b")


def test_step_labels():
    assert str(Idle()) == "start"
    assert str(AwaitingMenuChoice(("x",))) == "MENU"
    assert str(InFeature("access-review")) == "FEATURE:access-review"


def test_forget_identity():
    session = UserSession(identified_user="alice", display_name="Alice", capabilities=["Admin"])
    session.forget_identity()
    assert session.identified_user is None
    assert session.capabilities == []
