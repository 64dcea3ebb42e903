import json
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from alliance_app.app import db
from alliance_app.app.errors import StorageError, UserError
from alliance_app.app.interactions.payloads import (APPLICATION_COMMAND, EPHEMERAL, MESSAGE_COMPONENT, MODAL,
                                                    MODAL_SUBMIT, UPDATE_MESSAGE, Interaction)
from alliance_app.app.interactions.registry import INTERNAL_ERROR, CommandHandler, CommandRegistry
from alliance_app.app.models import Alliance, AllianceStatus, BotSettings, Participant

from conftest import GUILD_ID, ORGANIZER_ID, THREAD_ID, make_alliance

ADMIN = str(1 << 3)


def command(name, channel_id=10, user_id=ORGANIZER_ID, permissions="0"):
    return {
        "type": APPLICATION_COMMAND,
        "guild_id": str(GUILD_ID),
        "channel_id": str(channel_id),
        "member": {"user": {"id": str(user_id), "username": "capitaine"}, "permissions": permissions},
        "data": {"name": "alliance", "options": [{"type": 1, "name": name, "options": []}]},
    }


def component(custom_id, values=None, channel_id=10, user_id=ORGANIZER_ID, permissions="0"):
    return {
        "type": MESSAGE_COMPONENT,
        "guild_id": str(GUILD_ID),
        "channel_id": str(channel_id),
        "member": {"user": {"id": str(user_id), "username": "capitaine"}, "permissions": permissions},
        "data": {"custom_id": custom_id, "values": values or []},
    }


def modal_submit(custom_id, fields, channel_id=10, user_id=ORGANIZER_ID, permissions="0"):
    return {
        "type": MODAL_SUBMIT,
        "guild_id": str(GUILD_ID),
        "channel_id": str(channel_id),
        "member": {"user": {"id": str(user_id), "username": "capitaine"}, "permissions": permissions},
        "data": {
            "custom_id": custom_id,
            "components": [{"type": 1, "components": [{"type": 4, "custom_id": k, "value": v}]}
                           for k, v in fields.items()],
        },
    }


def post(client, payload):
    resp = client.post("/interactions", json=payload)
    assert resp.status_code == 200
    return resp.get_json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200


def test_ping_pong(client):
    assert post(client, {"type": 1}) == {"type": 1}


def test_rejects_non_object_payload(client):
    resp = client.post("/interactions", data="[]", content_type="application/json")
    assert resp.status_code == 400


def test_signature_is_checked(app, client):
    private = Ed25519PrivateKey.generate()
    public_hex = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    app.config.update(VERIFY_SIGNATURES=True, DISCORD_PUBLIC_KEY=public_hex)
    body = json.dumps({"type": 1}).encode()
    timestamp = "1700000000"

    signature = private.sign(timestamp.encode() + body).hex()
    headers = {"X-Signature-Ed25519": signature, "X-Signature-Timestamp": timestamp}
    resp = client.post("/interactions", data=body, headers=headers, content_type="application/json")
    assert resp.status_code == 200
    assert resp.get_json() == {"type": 1}

    tampered = json.dumps({"type": 1, "x": 1}).encode()
    resp = client.post("/interactions", data=tampered, headers=headers, content_type="application/json")
    assert resp.status_code == 401

    resp = client.post("/interactions", data=body, content_type="application/json")
    assert resp.status_code == 401


def test_unknown_root(client):
    data = post(client, component("nimportequoi:x"))
    assert data["data"]["flags"] == EPHEMERAL
    assert "inconnue" in data["data"]["content"]


def test_user_errors_are_private_replies(client):
    # no settings yet for the guild
    data = post(client, command("creer"))
    assert data["type"] == 4
    assert data["data"]["flags"] == EPHEMERAL
    assert "setup" in data["data"]["content"]


def test_setup_requires_administrator(client):
    data = post(client, command("setup"))
    assert "administrateurs" in data["data"]["content"]

    data = post(client, command("setup", permissions=ADMIN))
    assert "Configuration du bot" in data["data"]["content"]


def test_setup_stores_picked_channel(client):
    post(client, component("setup:value:command_channel_id", ["77"], permissions=ADMIN))
    data = post(client, component("setup:value:alliance_forum_channel_id", ["78"], permissions=ADMIN))

    assert data["type"] == UPDATE_MESSAGE
    settings = db.session.get(BotSettings, GUILD_ID)
    assert settings.command_channel_id == 77
    assert settings.alliance_forum_channel_id == 78


def test_setup_advanced_options(client):
    data = post(client, modal_submit("setup:advanced", {"max_ships": "4", "timezone": "UTC", "public_join": "non"},
                                     permissions=ADMIN))
    assert data["type"] == UPDATE_MESSAGE
    settings = db.session.get(BotSettings, GUILD_ID)
    assert (settings.default_max_ships, settings.timezone, settings.allow_public_join) == (4, "UTC", False)

    data = post(client, modal_submit("setup:advanced", {"max_ships": "x", "timezone": "UTC", "public_join": "oui"},
                                     permissions=ADMIN))
    assert data["data"]["flags"] == EPHEMERAL


def test_creation_wizard_end_to_end(client, settings, gateway):
    settings.default_max_ships = 2
    db.session.commit()

    data = post(client, command("creer"))
    assert "Création d'une alliance" in data["data"]["content"]

    assert post(client, component("creer:schedule"))["type"] == MODAL
    data = post(client, modal_submit("creer:schedule", {"date": "18/11", "start": "21h", "sale": "23h30"}))
    assert "2025-11-18" in data["data"]["content"]

    post(client, component("creer:fleet"))
    post(client, component("creer:hull:0", ["2"]))
    post(client, component("creer:role:0", ["Athéna"]))
    post(client, component("creer:ship", ["1"]))
    post(client, component("creer:hull:1", ["0"]))
    assert post(client, component("creer:role:1", ["__custom__"]))["type"] == MODAL
    post(client, modal_submit("creer:custom_role:1", {"role": "Coffres"}))
    post(client, component("creer:deputy", ["222"]))
    post(client, component("creer:reuse", ["yes"]))

    data = post(client, component("creer:finish"))

    assert "créée" in data["data"]["content"]
    alliance = Alliance.query.one()
    assert alliance.right_hand == "<@222>"
    assert alliance.ships_reuse_planned is True
    assert [(s.hull_type, s.crew_role) for s in alliance.ships] == [(2, "Athéna"), (0, "Coffres")]
    assert alliance.thread_channel_id is not None


def test_wizard_finish_reports_missing_steps(client, settings):
    post(client, command("creer"))
    data = post(client, component("creer:finish"))
    assert data["data"]["flags"] == EPHEMERAL
    assert "date et horaires" in data["data"]["content"]


def test_wizard_rejects_out_of_range_ship(client, settings):
    post(client, command("creer"))
    data = post(client, component("creer:hull:9", ["0"]))
    assert "invalide" in data["data"]["content"]


def test_join_and_leave_from_thread(client, settings):
    alliance = make_alliance()

    data = post(client, component("rejoindre:ship", ["1"], channel_id=THREAD_ID, user_id=501))
    assert "Brigantin - FDD" in data["data"]["content"]

    data = post(client, component("quitter:confirm", channel_id=THREAD_ID, user_id=501))
    assert data["type"] == UPDATE_MESSAGE
    assert Participant.query.filter_by(alliance_id=alliance.id, left_at=None).count() == 0


def test_start_and_end_from_thread(client, settings):
    alliance = make_alliance()

    data = post(client, command("demarrer", channel_id=THREAD_ID))
    assert "flags" not in data["data"]

    data = post(client, component("annuler:confirm", channel_id=THREAD_ID))
    assert "déjà démarré" in data["data"]["content"]

    post(client, component("terminer:confirm", channel_id=THREAD_ID))
    db.session.expire_all()
    assert db.session.get(Alliance, alliance.id).state == AllianceStatus.finished


def test_edit_requires_manager(client, settings):
    make_alliance()
    data = post(client, command("modifier", channel_id=THREAD_ID, user_id=999))
    assert "organisateur" in data["data"]["content"]


class _Boom(CommandHandler):
    root = "boom"

    def command(self, ix):
        raise RuntimeError("kaboom")

    def component(self, ix):
        raise StorageError("write failed")

    def modal(self, ix):
        raise UserError("non")


def test_registry_maps_errors_to_replies():
    registry = CommandRegistry()
    registry.register(_Boom())

    assert registry.dispatch(Interaction(command("boom")))["data"]["content"] == INTERNAL_ERROR
    assert registry.dispatch(Interaction(component("boom:x")))["data"]["content"] == INTERNAL_ERROR
    assert registry.dispatch(Interaction(modal_submit("boom:x", {})))["data"]["content"] == "non"


def test_registry_rejects_duplicate_roots():
    registry = CommandRegistry()
    registry.register(_Boom())
    with pytest.raises(ValueError):
        registry.register(_Boom())


def test_command_definitions_list_every_root(runtime):
    options = runtime.registry.command_definitions()[0]["options"]
    assert {o["name"] for o in options} == {
        "setup", "creer", "annuler", "rejoindre", "quitter", "demarrer", "terminer", "modifier"}


def test_interaction_parsing():
    ix = Interaction(component("modifier:role:3", ["FDD"], permissions=ADMIN))
    assert (ix.root, ix.action, ix.args, ix.values) == ("modifier", "role", ["3"], ["FDD"])
    assert ix.is_admin and not ix.is_command
    assert ix.user_name == "capitaine"


@pytest.mark.parametrize("custom_id,values,expected", [
    ("creer:ship", ["9"], "Bateau invalide"),
    ("creer:ship", ["abc"], "Sélection invalide"),
    ("creer:hull:0", ["7"], "coque invalide"),
    ("creer:role:0", [], "Sélection invalide"),
])
def test_wizard_rejects_bad_selections_privately(client, settings, custom_id, values, expected):
    post(client, command("creer"))
    post(client, component("creer:fleet"))

    data = post(client, component(custom_id, values))

    assert data["data"]["flags"] == EPHEMERAL
    assert expected in data["data"]["content"]
    assert data["data"]["content"] != INTERNAL_ERROR


def test_edit_rejects_bad_hull_privately(client, settings):
    make_alliance()
    data = post(client, component("modifier:hull:1", ["x"], channel_id=THREAD_ID))
    assert data["data"]["flags"] == EPHEMERAL
    assert "Sélection invalide" in data["data"]["content"]

    data = post(client, component("modifier:ship", [], channel_id=THREAD_ID))
    assert "Sélection invalide" in data["data"]["content"]
