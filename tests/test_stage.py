from app.edms.modules.routing.models import Request
from app.edms.modules.routing.stage import (
    UNIT_CHAIN,
    Stage,
    format_stage_label,
    is_unit_stage,
    next_stage,
    previous_stage,
    section_of,
    stage_of,
)


def _req(stage=None, section=None, **kw):
    return Request(subject="Test", uploaded_by_id="1", current_stage=stage, route_section=section, **kw)


class TestStageOf:
    def test_missing_stage_reads_as_platoon(self):
        assert stage_of(_req()) == Stage.PLATOON_REVIEW

    def test_unknown_stage_is_none(self):
        assert stage_of(_req("SOMEWHERE_ELSE")) is None

    def test_known_stage(self):
        assert stage_of(_req("HQMC_REVIEW")) == Stage.HQMC_REVIEW

    def test_enum_member_is_read_as_its_value(self):
        assert stage_of(_req(Stage.PLATOON_REVIEW)) == Stage.PLATOON_REVIEW
        assert stage_of(_req(Stage.ARCHIVED)) == Stage.ARCHIVED

    def test_section_is_stripped(self):
        assert section_of(_req("BATTALION_REVIEW", "  S-1 ")) == "S-1"
        assert section_of(_req("BATTALION_REVIEW")) == ""


class TestUnitChain:
    def test_chain_order(self):
        assert UNIT_CHAIN == (
            Stage.PLATOON_REVIEW,
            Stage.COMPANY_REVIEW,
            Stage.BATTALION_REVIEW,
            Stage.COMMANDER_REVIEW,
        )

    def test_next_stage(self):
        assert next_stage(Stage.PLATOON_REVIEW) == Stage.COMPANY_REVIEW
        assert next_stage(Stage.BATTALION_REVIEW) == Stage.COMMANDER_REVIEW
        assert next_stage(Stage.COMMANDER_REVIEW) is None
        assert next_stage(Stage.INSTALLATION_REVIEW) is None

    def test_previous_stage(self):
        assert previous_stage(Stage.COMPANY_REVIEW) == Stage.PLATOON_REVIEW
        assert previous_stage(Stage.PLATOON_REVIEW) is None
        assert previous_stage(Stage.ARCHIVED) is None

    def test_is_unit_stage(self):
        assert is_unit_stage(Stage.COMMANDER_REVIEW)
        assert not is_unit_stage(Stage.ORIGINATOR_REVIEW)
        assert not is_unit_stage(None)


class TestFormatStageLabel:
    def test_unit_labels(self):
        assert format_stage_label(_req("PLATOON_REVIEW")) == "Platoon"
        assert format_stage_label(_req("COMPANY_REVIEW")) == "Company"
        assert format_stage_label(_req("BATTALION_REVIEW")) == "Battalion"
        assert format_stage_label(_req("BATTALION_REVIEW", "S-1")) == "S-1"
        assert format_stage_label(_req("COMMANDER_REVIEW")) == "Commander"

    def test_installation_labels(self):
        assert format_stage_label(_req("INSTALLATION_REVIEW")) == "Installation Commander"
        assert format_stage_label(_req("INSTALLATION_REVIEW", "G-1")) == "Installation - G-1"

    def test_other_labels(self):
        assert format_stage_label(_req("HQMC_REVIEW", "MMSR")) == "HQMC - MMSR"
        assert format_stage_label(_req("EXTERNAL_REVIEW", external_pending_unit_name="2d Bn")) == "2d Bn"
        assert format_stage_label(_req("EXTERNAL_REVIEW")) == "External"
        assert format_stage_label(_req("ORIGINATOR_REVIEW")) == "Originator"
        assert format_stage_label(_req("ARCHIVED")) == "Archived"
        assert format_stage_label(_req()) == "Platoon"
        assert format_stage_label(_req(Stage.PLATOON_REVIEW)) == "Platoon"
        assert format_stage_label(_req(Stage.INSTALLATION_REVIEW, "G-1")) == "Installation - G-1"
