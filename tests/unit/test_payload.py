"""Tests for scan payload building and parsing."""

import json
from types import SimpleNamespace

import pytest

from certanchor.common.exceptions import ValidationError
from certanchor.verification.payload import ScanPayload, build_scan_payload, parse_scan_payload

RECORD = SimpleNamespace(
    id="CERT20260001",
    subject_name="Asha Rao",
    course_name="Data Science Essentials",
    content_fingerprint="ab" * 32,
)


class TestBuildScanPayload:
    def test_fields(self):
        data = json.loads(build_scan_payload(RECORD, "https://verify.example.org/"))
        assert data == {
            "certificateId": "CERT20260001",
            "subjectName": "Asha Rao",
            "courseName": "Data Science Essentials",
            "fingerprint": "ab" * 32,
            "verifyUrl": "https://verify.example.org/verify/CERT20260001",
        }

    def test_without_url(self):
        assert "verifyUrl" not in json.loads(build_scan_payload(RECORD))


class TestParseScanPayload:
    def test_parses_built_payload(self):
        payload = parse_scan_payload(build_scan_payload(RECORD))
        assert payload.certificate_id == "CERT20260001"
        assert payload.mismatches(RECORD) == []

    def test_snake_case_mapping(self):
        payload = parse_scan_payload({"certificate_id": "CERT20260001", "subject_name": "Asha Rao"})
        assert payload.subject_name == "Asha Rao"

    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            parse_scan_payload("{not json")

    def test_non_object(self):
        with pytest.raises(ValidationError):
            parse_scan_payload("[1, 2]")

    def test_missing_id(self):
        with pytest.raises(ValidationError) as exc:
            parse_scan_payload({"subjectName": "Asha Rao"})
        assert exc.value.fields == ["certificateId"]


class TestMismatches:
    def test_reports_each_wrong_field(self):
        payload = ScanPayload(
            certificate_id=RECORD.id,
            subject_name="Someone Else",
            course_name=RECORD.course_name,
            fingerprint="cd" * 32,
        )
        assert payload.mismatches(RECORD) == ["subject_name", "fingerprint"]

    def test_fingerprint_prefix_and_case_tolerated(self):
        payload = ScanPayload(
            certificate_id=RECORD.id,
            subject_name=RECORD.subject_name,
            course_name=RECORD.course_name,
            fingerprint="0x" + ("AB" * 32),
        )
        assert payload.mismatches(RECORD) == []

    def test_missing_fields_are_mismatches(self):
        payload = ScanPayload(certificate_id=RECORD.id)
        assert payload.mismatches(RECORD) == ["subject_name", "course_name", "fingerprint"]
