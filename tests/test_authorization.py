from types import SimpleNamespace

from app.edms.modules.routing.authorization import (
    Actor,
    ArchiveContext,
    ArchiveLevel,
    actor_from_user,
    can_actor_archive,
    can_archive_at_level,
    can_delete_request,
    can_requester_edit,
    can_review,
    originator_archive_only,
    permissions_for,
    reviewer_stage_for_role,
)
from app.edms.modules.routing.models import ActivityEntry, Request
from app.edms.modules.routing.stage import Stage

OWNER = "1"


def _req(stage="PLATOON_REVIEW", actions=(), owner=OWNER, **kw):
    kw.setdefault("unit_uic", "M12345")
    r = Request(subject="Test", uploaded_by_id=owner, current_stage=stage, **kw)
    for i, text in enumerate(actions):
        r.activity.append(ActivityEntry(position=i, actor="Sgt Doe", action=text))
    return r


class TestRequesterEdit:
    def test_owner_edits_in_unit_review(self):
        for stage in ("PLATOON_REVIEW", "COMPANY_REVIEW", "BATTALION_REVIEW"):
            assert can_requester_edit(_req(stage, ["Submitted request"]), OWNER)

    def test_non_owner_never_edits(self):
        assert not can_requester_edit(_req("PLATOON_REVIEW"), "2")

    def test_commander_review_is_locked(self):
        assert not can_requester_edit(_req("COMMANDER_REVIEW", ["Submitted request"]), OWNER)

    def test_returned_request_is_editable(self):
        r = _req("ORIGINATOR_REVIEW", ["Submitted request", "Returned for corrections"])
        assert can_requester_edit(r, OWNER)
        assert can_delete_request(r, OWNER)

    def test_approved_and_handed_back_is_locked(self):
        r = _req("ORIGINATOR_REVIEW", ["Submitted request", "Approved by Commander"])
        assert not can_requester_edit(r, OWNER)
        assert originator_archive_only(r, OWNER)
        assert not can_delete_request(r, OWNER)

    def test_approved_wins_over_later_return_text(self):
        r = _req("ORIGINATOR_REVIEW", ["Approved by Commander", "Returned to originator"])
        assert not can_requester_edit(r, OWNER)

    def test_blank_owner_never_matches(self):
        assert not can_requester_edit(_req(owner=""), "")
        assert not can_requester_edit(_req(), None)

    def test_enum_stage_is_editable(self):
        r = _req(Stage.PLATOON_REVIEW, ["Submitted request"])
        assert can_requester_edit(r, OWNER)
        assert can_delete_request(r, OWNER)
        assert can_review(r, Actor("2", "Sgt P", role="PLATOON_REVIEWER", unit_uic="M12345"))


class TestDelete:
    def test_owner_deletes_fresh_request(self):
        assert can_delete_request(_req("COMPANY_REVIEW", ["Submitted request"]), OWNER)

    def test_any_commander_decision_locks_delete(self):
        for actions in (
            ["Approved by Commander"],
            ["Endorsed by Commander"],
            ["Approved by Installation Commander"],
            ["Endorsed by Installation Commander"],
            ["Approved by Commander", "Sent to Installation Commander"],
        ):
            for stage in ("PLATOON_REVIEW", "BATTALION_REVIEW", "INSTALLATION_REVIEW", "ORIGINATOR_REVIEW"):
                assert not can_delete_request(_req(stage, actions), OWNER), (stage, actions)

    def test_archived_cannot_be_deleted(self):
        assert not can_delete_request(_req("ARCHIVED", ["Submitted request"]), OWNER)

    def test_other_user_cannot_delete(self):
        assert not can_delete_request(_req(), "2")


class TestArchiveAtLevel:
    def test_originator_level(self):
        approved = _req("ORIGINATOR_REVIEW", ["Approved by Commander"])
        assert can_archive_at_level(approved, {"actor_level": "originator"})
        returned = _req("ORIGINATOR_REVIEW", ["Returned for corrections"])
        assert not can_archive_at_level(returned, {"actor_level": "originator"})

    def test_unit_level_needs_battalion_and_uic(self):
        r = _req("BATTALION_REVIEW", ["Approved by Commander"])
        assert can_archive_at_level(r, ArchiveContext("unit", actor_unit_uic="M12345"))
        assert not can_archive_at_level(r, ArchiveContext("unit", actor_unit_uic="M99999"))
        assert not can_archive_at_level(r, ArchiveContext("unit"))
        assert not can_archive_at_level(_req("BATTALION_REVIEW", ["Submitted request"]), ArchiveContext("unit", "M12345"))
        assert not can_archive_at_level(_req("COMPANY_REVIEW", ["Approved by Commander"]), ArchiveContext("unit", "M12345"))

    def test_installation_level(self):
        r = _req("INSTALLATION_REVIEW", ["Endorsed by Installation Commander"], installation_id="INST-1")
        assert can_archive_at_level(r, {"actor_level": "installation", "actor_installation_id": "INST-1"})
        assert not can_archive_at_level(r, {"actor_level": "installation", "actor_installation_id": "INST-2"})

    def test_hqmc_level(self):
        assert can_archive_at_level(_req("HQMC_REVIEW", ["Approved by HQMC"]), {"actor_level": "hqmc"})
        assert not can_archive_at_level(_req("HQMC_REVIEW", ["Sent to HQMC: MRA"]), {"actor_level": "hqmc"})

    def test_external_and_unknown_levels(self):
        r = _req("EXTERNAL_REVIEW", ["Approved by Commander"])
        assert not can_archive_at_level(r, {"actor_level": "external"})
        assert not can_archive_at_level(r, {"actor_level": "galaxy"})
        assert not can_archive_at_level(r, {})

    def test_archived_request(self):
        r = _req("ARCHIVED", ["Approved by HQMC"])
        assert not can_archive_at_level(r, {"actor_level": "hqmc"})

    def test_enum_level_and_stage(self):
        r = _req(Stage.ORIGINATOR_REVIEW, ["Approved by Commander"])
        assert can_archive_at_level(r, {"actor_level": ArchiveLevel.ORIGINATOR})
        assert can_archive_at_level(r, ArchiveContext(ArchiveLevel.ORIGINATOR))
        bn = _req(Stage.BATTALION_REVIEW, ["Approved by Commander"])
        assert can_archive_at_level(bn, ArchiveContext(ArchiveLevel.UNIT, actor_unit_uic="M12345"))

    def test_total_on_garbage(self):
        assert not can_archive_at_level(object(), None)
        assert not can_requester_edit(None, None)
        assert not can_delete_request(None, OWNER)


class TestReviewScope:
    def test_role_to_stage(self):
        assert reviewer_stage_for_role("PLATOON_REVIEWER") == Stage.PLATOON_REVIEW
        assert reviewer_stage_for_role("company_reviewer") == Stage.COMPANY_REVIEW
        assert reviewer_stage_for_role("BATTALION_REVIEWER") == Stage.BATTALION_REVIEW
        assert reviewer_stage_for_role("COMMANDER") == Stage.COMMANDER_REVIEW
        assert reviewer_stage_for_role("INSTALLATION_COMMANDER") is None
        assert reviewer_stage_for_role("HQMC_REVIEWER") is None
        assert reviewer_stage_for_role(None) is None

    def test_unit_reviewer_needs_matching_stage_and_uic(self):
        r = _req("PLATOON_REVIEW")
        assert can_review(r, Actor("2", "Sgt P", role="PLATOON_REVIEWER", unit_uic="M12345"))
        assert not can_review(r, Actor("2", "Sgt P", role="PLATOON_REVIEWER", unit_uic="M99999"))
        assert not can_review(r, Actor("3", "1stSgt C", role="COMPANY_REVIEWER", unit_uic="M12345"))

    def test_installation_hqmc_external_and_originator(self):
        inst = _req("INSTALLATION_REVIEW", installation_id="INST-1")
        assert can_review(inst, Actor("6", "Maj I", installation_id="INST-1"))
        assert not can_review(inst, Actor("6", "Maj I", installation_id="INST-2"))

        assert can_review(_req("HQMC_REVIEW"), Actor("8", "Col H", hqmc_division="MRA"))
        assert not can_review(_req("HQMC_REVIEW"), Actor("8", "Col H"))

        ext = _req("EXTERNAL_REVIEW", external_pending_unit_uic="M99999")
        assert can_review(ext, Actor("9", "Capt E", unit_uic="M99999"))
        assert not can_review(ext, Actor("9", "Capt E", unit_uic="M12345"))

        assert can_review(_req("ORIGINATOR_REVIEW"), Actor(OWNER, "LCpl O"))

    def test_admin_reviews_anything_but_archived(self):
        admin = Actor("99", "Admin", is_app_admin=True)
        assert can_review(_req("HQMC_REVIEW"), admin)
        assert not can_review(_req("ARCHIVED"), admin)
        assert not can_review(_req("PLATOON_REVIEW"), None)


class TestActorArchive:
    def test_owner_archives_at_originator_level_only(self):
        r = _req("ORIGINATOR_REVIEW", ["Approved by Commander"])
        owner = Actor(OWNER, "LCpl O", unit_uic="M12345")
        assert can_actor_archive(r, owner, "originator")
        assert can_actor_archive(r, owner, ArchiveLevel.ORIGINATOR)
        assert not can_actor_archive(r, owner, "unit")

    def test_battalion_archives_at_unit_level(self):
        r = _req("BATTALION_REVIEW", ["Approved by Commander"])
        bn = Actor("4", "Maj B", role="BATTALION_REVIEWER", unit_uic="M12345")
        assert can_actor_archive(r, bn, "unit")
        platoon = Actor("2", "Sgt P", role="PLATOON_REVIEWER", unit_uic="M12345")
        assert not can_actor_archive(r, platoon, "unit")

    def test_permissions_summary(self):
        r = _req("ORIGINATOR_REVIEW", ["Approved by Commander"])
        perms = permissions_for(r, Actor(OWNER, "LCpl O"))
        assert perms == {
            "can_edit": False,
            "can_delete": False,
            "originator_archive_only": True,
            "can_review": True,
            "archive_levels": ["originator"],
        }


def test_actor_from_user():
    user = SimpleNamespace(
        id=7,
        email="doe@example.com",
        rank="Sgt",
        display_name="Doe, Jane",
        org_role="PLATOON_REVIEWER",
        unit_uic="M12345",
        installation_id=None,
        hqmc_division=None,
        is_app_admin=False,
    )
    actor = actor_from_user(user)
    assert actor.user_id == "7"
    assert actor.name == "Sgt Doe, Jane"
    assert actor.role == "PLATOON_REVIEWER"

    bare = actor_from_user(SimpleNamespace(id=8, email="x@example.com"))
    assert bare.name == "x@example.com"
    assert not bare.is_app_admin
