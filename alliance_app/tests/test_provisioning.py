import logging
import pytest

from alliance_app.app import db
from alliance_app.app.gateway import DeleteOutcome
from alliance_app.app.models import HullType, ProvisionedResource, ResourceKind
from alliance_app.app.provisioning import (DEPUTY_ROLE_NAME, HUB_CHANNEL_NAMES, ORGANIZER_ROLE_NAME, TeardownQueue,
                                           find_role, live_resources)

from conftest import DEPUTY_ID, NOW, ORGANIZER_ID, add_participant, make_alliance


@pytest.fixture
def provisioner(runtime):
    return runtime.provisioner


@pytest.fixture
def queue(gateway):
    # no runner: drain() is driven by hand
    return TeardownQueue(gateway, None, logging.getLogger("teardown-test"), interval=5, max_retries=3)


def test_provision_creates_and_records_everything(provisioner, gateway, settings):
    alliance = make_alliance(hulls=(HullType.brig, HullType.brig, HullType.galleon),
                             roles=["FDD", "FDD", "Athéna"])
    add_participant(alliance, 501, 1, NOW)
    add_participant(alliance, 502, 3, NOW)

    roles = provisioner.provision(alliance.id)

    # ships sharing hull and role share one role
    assert set(roles) == {alliance.name, ORGANIZER_ROLE_NAME, DEPUTY_ROLE_NAME, "Brigantin FDD", "Galion Athéna"}
    voice = live_resources(alliance.id, ResourceKind.voice_channel)
    assert voice[0].name in HUB_CHANNEL_NAMES
    assert [v.name for v in voice[1:]] == ["Brigantin - FDD", "Brigantin - FDD", "Galion - Athéna"]
    assert len(live_resources(alliance.id, ResourceKind.category)) == 1
    assert all(r.auto_delete for r in live_resources(alliance.id))

    first_grant = next(i for i, c in enumerate(gateway.calls) if c[0] == "grant_role")
    last_create = max(i for i, c in enumerate(gateway.calls) if c[0].startswith("create_"))
    assert last_create < first_grant

    member_grants = [c[1] for c in gateway.calls_of("grant_role") if c[2] == roles[alliance.name]]
    assert sorted(member_grants) == sorted([501, 502, ORGANIZER_ID, DEPUTY_ID])
    assert ("grant_role", 501, roles["Brigantin FDD"]) in gateway.calls
    assert ("grant_role", 502, roles["Galion Athéna"]) in gateway.calls
    assert ("grant_role", DEPUTY_ID, roles[DEPUTY_ROLE_NAME]) in gateway.calls


def test_provision_without_deputy(provisioner, settings):
    alliance = make_alliance(right_hand="")
    roles = provisioner.provision(alliance.id)
    assert DEPUTY_ROLE_NAME not in roles


def test_provision_keeps_going_when_a_create_fails(provisioner, gateway, settings):
    gateway.fail_creates.add("create_category")
    alliance = make_alliance()

    roles = provisioner.provision(alliance.id)

    assert find_role(alliance.id, alliance.name).external_id == roles[alliance.name]
    assert live_resources(alliance.id, ResourceKind.category) == []
    assert len(live_resources(alliance.id, ResourceKind.voice_channel)) == 3


def test_teardown_deletes_channels_before_roles(provisioner, queue, gateway, settings):
    alliance = make_alliance()
    provisioner.provision(alliance.id)

    report = queue.teardown(alliance.id)

    kinds = [c[0] for c in gateway.calls if c[0].startswith("delete_")]
    assert kinds.index("delete_role") > max(i for i, k in enumerate(kinds) if k == "delete_channel")
    assert report.deleted == len(kinds)
    assert live_resources(alliance.id, auto_delete_only=True) == []


def test_teardown_leaves_thread_and_roster(queue, gateway, settings):
    alliance = make_alliance()
    for kind, ext in ((ResourceKind.thread, 1), (ResourceKind.message, 2)):
        db.session.add(ProvisionedResource(alliance_id=alliance.id, kind=int(kind), external_id=ext,
                                           auto_delete=False))
    db.session.commit()

    report = queue.teardown(alliance.id)

    assert report.deleted == 0
    assert gateway.calls == []
    assert len(live_resources(alliance.id)) == 2


def test_not_found_counts_as_deleted(provisioner, queue, gateway, settings):
    alliance = make_alliance()
    provisioner.provision(alliance.id)
    category = live_resources(alliance.id, ResourceKind.category)[0]
    gateway.delete_outcomes[category.external_id] = DeleteOutcome.NOT_FOUND

    report = queue.teardown(alliance.id)

    assert report.failed == 0 and report.queued == 0
    assert db.session.get(ProvisionedResource, category.id).deleted_at is not None


def test_hard_error_is_not_retried(provisioner, queue, gateway, settings):
    alliance = make_alliance()
    provisioner.provision(alliance.id)
    role = find_role(alliance.id, alliance.name)
    gateway.delete_outcomes[role.external_id] = DeleteOutcome.ERROR

    report = queue.teardown(alliance.id)

    assert report.failed == 1
    assert len(queue) == 0
    assert db.session.get(ProvisionedResource, role.id).deleted_at is None
    assert db.session.get(ProvisionedResource, role.id).abandoned_at is not None

    assert queue.teardown(alliance.id).failed == 0
    assert gateway.calls.count(("delete_role", role.external_id)) == 1


def test_rate_limited_delete_succeeds_on_retry(provisioner, queue, gateway, settings):
    alliance = make_alliance()
    provisioner.provision(alliance.id)
    role = find_role(alliance.id, alliance.name)
    gateway.delete_outcomes[role.external_id] = [DeleteOutcome.RATE_LIMITED]

    report = queue.teardown(alliance.id)
    assert report.queued == 1 and len(queue) == 1

    assert queue.drain() == 0
    assert db.session.get(ProvisionedResource, role.id).deleted_at is not None
    assert db.session.get(ProvisionedResource, role.id).abandoned_at is None


def test_rate_limited_delete_is_abandoned_after_three_retries(provisioner, queue, gateway, settings, caplog):
    alliance = make_alliance()
    provisioner.provision(alliance.id)
    role = find_role(alliance.id, alliance.name)
    gateway.delete_outcomes[role.external_id] = DeleteOutcome.RATE_LIMITED

    queue.teardown(alliance.id)
    with caplog.at_level(logging.WARNING, logger="teardown-test"):
        assert queue.drain() == 1
        assert queue.drain() == 1
        assert queue.drain() == 0
        assert queue.drain() == 0

    # one initial attempt plus three retries
    assert gateway.calls.count(("delete_role", role.external_id)) == 4
    assert db.session.get(ProvisionedResource, role.id).abandoned_at is not None
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING and "Abandoning" in r.getMessage()]
    assert len(warnings) == 1
    assert db.session.get(ProvisionedResource, role.id).deleted_at is None


def test_queued_item_is_not_deleted_twice(provisioner, queue, gateway, settings):
    alliance = make_alliance()
    provisioner.provision(alliance.id)
    role = find_role(alliance.id, alliance.name)
    gateway.delete_outcomes[role.external_id] = [DeleteOutcome.RATE_LIMITED]
    queue.teardown(alliance.id)

    report = queue.teardown(alliance.id)

    assert report.skipped == [role.id]
    assert gateway.calls.count(("delete_role", role.external_id)) == 1
    queue.drain()
    assert queue.teardown(alliance.id).deleted == 0
