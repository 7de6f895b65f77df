"""
Unit tests for the pass model builder and template loading
"""
import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from walletpass.core.errors import TemplateInvalid
from walletpass.schemas import PassInputData
from walletpass.services.pass_builder import (
    PassBuilder,
    PassTemplate,
    barcode_message,
    build,
    normalize_subject,
)

ISSUED_AT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
ISSUED_MS = int(ISSUED_AT.timestamp() * 1000)


class TestTemplateLoading:

    def test_loads_bundled_template(self, template):
        assert template.name == "eventTicket.pass"
        assert template.style == "eventTicket"
        assert template.version == 1

    def test_missing_descriptor(self, template_dir):
        (template_dir / "pass.json").unlink()

        with pytest.raises(TemplateInvalid):
            PassTemplate.load(template_dir)

    def test_invalid_descriptor_json(self, template_dir):
        (template_dir / "pass.json").write_text("{broken")

        with pytest.raises(TemplateInvalid):
            PassTemplate.load(template_dir)

    def test_descriptor_without_style(self, template_dir):
        (template_dir / "pass.json").write_text(json.dumps({"formatVersion": 1}))

        with pytest.raises(TemplateInvalid):
            PassTemplate.load(template_dir)

    def test_missing_icon(self, template_dir):
        (template_dir / "icon.png").unlink()

        with pytest.raises(TemplateInvalid) as exc:
            PassTemplate.load(template_dir)

        assert "icon.png" in str(exc.value)

    def test_optional_asset_missing_still_loads(self, template_dir):
        (template_dir / "strip@2x.png").unlink()

        assert PassTemplate.load(template_dir).style == "eventTicket"

    def test_directory_missing(self, tmp_path):
        with pytest.raises(TemplateInvalid):
            PassTemplate.load(tmp_path / "nope.pass")

    def test_base_descriptor_is_a_copy(self, template):
        copy_ = template.base_descriptor()
        copy_["eventTicket"]["primaryFields"].append({"key": "x"})

        assert template.descriptor["eventTicket"]["primaryFields"] == []


class TestNormalizeSubject:

    @pytest.mark.parametrize("raw,expected", [
        ("u123", "u123"),
        ("  u123 ", "u123"),
        ("u123.pkpass", "u123"),
        ("pass-u123-1714564800000", "u123"),
        ("u123-1714564800000", "u123"),
        ("user@example.com", "user_example.com"),
        ("u-12", "u-12"),
        ("pass-holder", "pass-holder"),
        ("pass-u123-1714564800000-0a1b2c3d", "u123"),
        ("pass-u123-1714564800000.pkpass", "u123"),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_subject(raw) == expected

    def test_empty_subject_rejected(self):
        with pytest.raises(ValueError):
            normalize_subject("   ")


class TestBarcodeMessage:

    def test_default_profile_path(self):
        assert barcode_message("https://x.com/", "u123", PassInputData()) == "https://x.com/u/u123"

    def test_referrer_path(self):
        data = PassInputData(referrerPath="/r/abc")
        assert barcode_message("https://x.com", "u123", data) == "https://x.com/r/abc"

    def test_absolute_profile_url_wins(self):
        data = PassInputData(profileUrl="https://profiles.example/ada", referrerPath="r/abc")
        assert barcode_message("https://x.com", "u123", data) == "https://profiles.example/ada"


class TestBuild:

    def test_scenario_fields(self, settings, template):
        data = PassInputData(memberName="Ada", location="Gate 4")

        record = PassBuilder(settings).build(template, "u123", data, issued_at=ISSUED_AT)

        assert record.serial_number == f"pass-u123-{ISSUED_MS}"
        assert record.instance_id == f"u123-{ISSUED_MS}"
        assert record.primary_fields[0].value == "Ada"
        assert record.secondary_fields[0].value == "Gate 4"
        assert record.barcode.message == "https://passes.example.com/u/u123"
        assert record.barcode.format == "PKBarcodeFormatQR"

    def test_defaults_applied(self, settings, template):
        record = PassBuilder(settings).build(template, "u123", issued_at=ISSUED_AT)

        assert record.organization_name == "Test Org"
        assert record.description == "Event Access Pass"
        assert record.header_fields[0].label == "EVENT"
        assert record.header_fields[0].value == "VIP Access"
        assert record.primary_fields[0].value == "Member"
        assert record.secondary_fields[0].value == "Main Entrance"
        assert record.pass_type_identifier == "pass.com.example.event"
        assert record.team_identifier == "ABCDE12345"
        assert record.background_color is None

    def test_caller_overrides(self, settings, template):
        data = PassInputData(
            organizationName="Acme",
            description="Backstage",
            headerLabel="SHOW",
            headerValue="Night 2",
            title="Crew",
            passTypeIdentifier="pass.com.acme",
            teamOrIssuerIdentifier="ZZZZZ99999",
            backgroundColor="#112233",
        )

        record = PassBuilder(settings).build(template, "u123", data, issued_at=ISSUED_AT)

        assert record.organization_name == "Acme"
        assert record.description == "Backstage"
        assert (record.header_fields[0].label, record.header_fields[0].value) == ("SHOW", "Night 2")
        assert record.auxiliary_fields[0].value == "Crew"
        assert record.pass_type_identifier == "pass.com.acme"
        assert record.team_identifier == "ZZZZZ99999"
        assert record.background_color == "#112233"

    def test_deterministic(self, settings, template):
        data = PassInputData(memberName="Ada")
        builder = PassBuilder(settings)

        first = builder.build(template, "u123", data, issued_at=ISSUED_AT)
        second = builder.build(template, "u123", data, issued_at=ISSUED_AT)

        assert first == second

    def test_unique_per_subject_and_time(self, settings, template):
        builder = PassBuilder(settings)
        base = builder.build(template, "u123", issued_at=ISSUED_AT)

        later = builder.build(template, "u123", issued_at=datetime(2024, 5, 1, 12, 0, 1, tzinfo=timezone.utc))
        other = builder.build(template, "u456", issued_at=ISSUED_AT)

        assert len({base.serial_number, later.serial_number, other.serial_number}) == 3

    def test_nonce_setting(self, settings, template):
        settings.serial_nonce_enabled = True
        builder = PassBuilder(settings)

        first = builder.build(template, "u123", issued_at=ISSUED_AT)
        second = builder.build(template, "u123", issued_at=ISSUED_AT)

        assert first.serial_number != second.serial_number
        assert first.serial_number.startswith(f"pass-u123-{ISSUED_MS}-")

    def test_explicit_nonce(self, settings, template):
        record = PassBuilder(settings).build(template, "u123", issued_at=ISSUED_AT, nonce="abcd")

        assert record.serial_number == f"pass-u123-{ISSUED_MS}-abcd"

    def test_naive_timestamp_treated_as_utc(self, settings, template):
        record = PassBuilder(settings).build(template, "u123", issued_at=datetime(2024, 5, 1, 12, 0, 0))

        assert record.serial_number == f"pass-u123-{ISSUED_MS}"

    def test_logo_text_defaults_to_template(self, settings, template):
        record = PassBuilder(settings).build(template, "u123", issued_at=ISSUED_AT)

        assert record.logo_text == "Event Pass"

    def test_caller_organization_sets_logo_text(self, settings, template):
        data = PassInputData(organizationName="Acme")

        record = PassBuilder(settings).build(template, "u123", data, issued_at=ISSUED_AT)

        assert record.logo_text == "Acme"

    def test_normalized_subject_used(self, settings, template):
        record = PassBuilder(settings).build(template, "u123.pkpass", issued_at=ISSUED_AT)

        assert record.subject_id == "u123"
        assert record.barcode.alt_text == "u123"

    def test_record_is_frozen(self, settings, template):
        record = PassBuilder(settings).build(template, "u123", issued_at=ISSUED_AT)

        with pytest.raises(Exception):
            record.serial_number = "other"


def test_module_build_uses_process_settings(settings, template):
    with patch("walletpass.services.pass_builder.get_settings", return_value=settings):
        record = build(template, "u123", PassInputData(memberName="Ada"), issued_at=ISSUED_AT)

    assert record.serial_number == f"pass-u123-{ISSUED_MS}"
    assert record.organization_name == "Test Org"
