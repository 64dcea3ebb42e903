import sys
import os
import itertools
from datetime import datetime, timedelta
import pytest

# ensure repository root is on sys.path so `alliance_app` package can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Ensure tests have a DATABASE_URL so importing app.config doesn't raise
os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
from alliance_app.app import create_app, db
from alliance_app.app.config import Config
from alliance_app.app.gateway import DeleteOutcome, Gateway
from alliance_app.app.models import Alliance, AllianceStatus, BotSettings, HullType, Participant, Ship

GUILD_ID = 4242
THREAD_ID = 9001
ORGANIZER_ID = 111
DEPUTY_ID = 222
NOW = datetime(2025, 11, 1, 12, 0)


# Config declares its attributes as Final, so the test config is a separate class
# rather than a subclass that redeclares them.
class TestConfig:
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = getattr(Config, "SECRET_KEY", "test-secret")
    BACKGROUND_ENABLED = False
    VERIFY_SIGNATURES = False
    DISCORD_PUBLIC_KEY = ""
    DEFAULT_TIMEZONE = "Europe/Paris"
    TEARDOWN_RETRY_SECONDS = 5
    TEARDOWN_MAX_RETRIES = 3


class FakeGateway(Gateway):
    """Records every call. Delete outcomes can be scripted per external id."""

    def __init__(self):
        self.calls = []
        self._ids = itertools.count(1000)
        self.delete_outcomes = {}
        self.fail_creates = set()
        self.channel_names = {}

    def _next(self, call, *args):
        if call in self.fail_creates:
            from alliance_app.app.errors import GatewayError
            raise GatewayError(500, "boom")
        new_id = next(self._ids)
        self.calls.append((call,) + args + (new_id,))
        return new_id

    def calls_of(self, name):
        return [c for c in self.calls if c[0] == name]

    def create_role(self, guild_id, name, color=0, hoist=False, mentionable=False):
        return self._next("create_role", name, color)

    def create_category(self, guild_id, name, position=None):
        return self._next("create_category", name)

    def create_voice_channel(self, guild_id, name, parent_id=None, overwrites=None, position=None):
        return self._next("create_voice_channel", name, parent_id)

    def _delete(self, call, external_id):
        self.calls.append((call, external_id))
        script = self.delete_outcomes.get(external_id)
        if isinstance(script, list):
            return script.pop(0) if script else DeleteOutcome.OK
        return script or DeleteOutcome.OK

    def delete_role(self, guild_id, role_id):
        return self._delete("delete_role", role_id)

    def delete_channel(self, channel_id):
        return self._delete("delete_channel", channel_id)

    def grant_role(self, guild_id, user_id, role_id):
        self.calls.append(("grant_role", user_id, role_id))

    def revoke_role(self, guild_id, user_id, role_id):
        self.calls.append(("revoke_role", user_id, role_id))

    def create_forum_thread(self, forum_id, title, content):
        thread_id = self._next("create_forum_thread", forum_id, title)
        self.channel_names[thread_id] = title
        return thread_id

    def send_message(self, channel_id, content="", embeds=None, allowed_mentions=None):
        return self._next("send_message", channel_id, content)

    def edit_message(self, channel_id, message_id, content=None, embeds=None):
        self.calls.append(("edit_message", channel_id, message_id))

    def get_channel_name(self, channel_id):
        return self.channel_names.get(channel_id, "Mardi 18/11 21h00 - 23h00")

    def rename_channel(self, channel_id, name):
        self.channel_names[channel_id] = name
        self.calls.append(("rename_channel", channel_id, name))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(gateway):
    app = create_app(TestConfig, gateway=gateway)
    app.extensions["alliance"].controller.clock = lambda: NOW
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runtime(app):
    return app.extensions["alliance"]


@pytest.fixture
def controller(runtime):
    return runtime.controller


@pytest.fixture
def settings(app):
    s = BotSettings(
        guild_id=GUILD_ID,
        command_channel_id=10,
        ping_channel_id=11,
        alliance_forum_channel_id=12,
        notify_role_id=13,
        timezone="UTC",
    )
    db.session.add(s)
    db.session.commit()
    return s


def make_alliance(status=AllianceStatus.planned, hulls=(HullType.brig, HullType.sloop), roles=None,
                  right_hand=f"<@{DEPUTY_ID}>", thread_id=THREAD_ID, name="Alliance des Sept Mers"):
    a = Alliance(
        guild_id=GUILD_ID,
        organizer_id=ORGANIZER_ID,
        right_hand=right_hand,
        name=name,
        scheduled_at=NOW + timedelta(days=2),
        sale_at=NOW + timedelta(days=2, hours=3),
        status=int(status),
        max_ships=len(hulls),
        thread_channel_id=thread_id,
    )
    db.session.add(a)
    db.session.flush()
    roles = roles or ["FDD"] * len(hulls)
    for slot, (hull, role) in enumerate(zip(hulls, roles), start=1):
        db.session.add(Ship(alliance_id=a.id, slot=slot, hull_type=int(hull), crew_role=role))
    db.session.commit()
    return a


def add_participant(alliance, user_id, slot, joined_at):
    ship = Ship.query.filter_by(alliance_id=alliance.id, slot=slot).one()
    p = Participant(alliance_id=alliance.id, user_id=user_id, ship_id=ship.id, joined_at=joined_at)
    db.session.add(p)
    db.session.commit()
    return p
