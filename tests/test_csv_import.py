import pytest

from visual_tracker.application import api as app_api
from visual_tracker.domain.models import LearningSession
from visual_tracker.infrastructure.config import reset_settings
from visual_tracker.infrastructure.exceptions import BusinessLogicError, CSVImportError
from visual_tracker.infrastructure.repositories import DomainRepo, load_snapshot
from visual_tracker.utils.csv_import import (
    DomainKeyword,
    domain_keyword,
    header_map,
    mapped_session,
    normalized_expertise,
    parse_student_csv,
)

ROSTER = (
    "Full Name,Expertise Check,Learning Session\n"
    "Ada Lovelace,Tech (iOS),Afternoon\n"
    "Grace Hopper,Domain Expert,Morning\n"
    "Linus,Design,\n"
    ",Tech,Morning\n"
    "ada lovelace,Design,Morning\n"
    "Margaret,Data,Afternoon session\n"
)


def test_parse_roster_builds_preview_and_candidates():
    result = parse_student_csv(ROSTER)

    assert result.total_rows == 6
    assert result.valid_rows == 4
    assert result.skipped_rows == 2

    reasons = {row.row_number: row.reason for row in result.preview_rows if not row.is_valid}
    assert reasons == {5: "missing name", 6: "duplicate name"}

    by_name = {c.name: c for c in result.candidates}
    assert by_name["Ada Lovelace"].domain_keyword is DomainKeyword.TECH
    assert by_name["Ada Lovelace"].session is LearningSession.AFTERNOON
    assert by_name["Ada Lovelace"].expertise_raw == "Tech (iOS)"
    assert by_name["Grace Hopper"].domain_keyword is DomainKeyword.DOMAIN_EXPERT
    assert by_name["Linus"].session is LearningSession.MORNING
    assert by_name["Margaret"].domain_keyword is None
    assert by_name["Margaret"].session is LearningSession.AFTERNOON


def test_headers_are_matched_loosely():
    text = "\ufeff  full NAME ,LEARNING SESSION, Expertise check \n Ada ,Afternoon,Tech\n"
    result = parse_student_csv(text)
    assert [c.name for c in result.candidates] == ["Ada"]
    assert result.candidates[0].session is LearningSession.AFTERNOON


def test_bytes_with_bom_are_accepted():
    data = "\ufeffFull Name,Expertise Check,Learning Session\nAda,Tech,Morning\n".encode("utf-8")
    assert parse_student_csv(data).valid_rows == 1


def test_path_source(tmp_path):
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER, encoding="utf-8")
    assert parse_student_csv(path).valid_rows == 4


def test_missing_headers_are_reported():
    with pytest.raises(CSVImportError) as exc_info:
        parse_student_csv("Full Name,Session\nAda,Morning\n")
    assert exc_info.value.missing_headers == ["Expertise Check", "Learning Session"]
    assert "Missing required headers" in exc_info.value.user_message


def test_empty_file_is_rejected():
    with pytest.raises(CSVImportError):
        parse_student_csv("")


def test_blank_rows_are_ignored():
    text = "Full Name,Expertise Check,Learning Session\n,,\nAda,Tech,Morning\n , , \n"
    result = parse_student_csv(text)
    assert result.total_rows == 1
    assert result.skipped_rows == 0


def test_rows_wider_than_the_header_are_kept():
    text = (
        "Full Name,Expertise Check,Learning Session\n"
        "Ada,Tech,Morning,\n"
        "Bob,Design,Afternoon,late joiner\n"
        "Cy,Tech\n"
    )
    result = parse_student_csv(text)

    assert result.valid_rows == 3
    by_name = {c.name: c for c in result.candidates}
    assert by_name["Bob"].session is LearningSession.AFTERNOON
    assert by_name["Bob"].expertise_raw == "Design"
    assert by_name["Cy"].session is LearningSession.MORNING


def test_trailing_comma_on_single_row():
    data = b"Full Name,Expertise Check,Learning Session\nAda,Tech,Morning,\n"
    assert parse_student_csv(data).valid_rows == 1


def test_duplicate_header_uses_last_column():
    assert header_map(["Name", "name", "Other"]) == {"name": 1, "other": 2}


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Tech (iOS)", DomainKeyword.TECH),
        ("Domain Expert (Tech)", DomainKeyword.DOMAIN_EXPERT),
        ("product design", DomainKeyword.DESIGN),
        ("Data", None),
        ("", None),
    ],
)
def test_domain_keyword(raw, expected):
    assert domain_keyword(normalized_expertise(raw)) is expected


def test_session_mapping_defaults_to_morning():
    assert mapped_session("AFTERNOON") is LearningSession.AFTERNOON
    assert mapped_session("evening") is LearningSession.MORNING
    assert mapped_session("") is LearningSession.MORNING


def test_import_creates_students(seeded_session):
    summary = app_api.import_students_from_csv(seeded_session, ROSTER)

    assert summary.imported == 4
    assert summary.skipped == 2
    assert summary.failed == 0
    assert summary.message == "Imported 4, skipped 2, failed 0."

    snapshot = load_snapshot(seeded_session)
    students = {s.name: s for s in snapshot.students}
    tech = DomainRepo(seeded_session).get_by_name("Tech")
    assert students["Ada Lovelace"].domain_id == tech.id
    assert students["Margaret"].domain_id is None
    assert [(p.key, p.value) for p in students["Ada Lovelace"].custom_properties] == [
        ("Expertise Check", "Tech (iOS)")
    ]


def test_import_counts_existing_names_as_failed(seeded_session):
    app_api.add_student(seeded_session, "Grace Hopper")
    summary = app_api.import_students_from_csv(seeded_session, ROSTER)
    assert summary.imported == 3
    assert summary.failed == 1
    assert summary.failed_names == ["Grace Hopper"]


def test_import_creates_preset_domains(session):
    summary = app_api.import_students_from_csv(
        session, "Full Name,Expertise Check,Learning Session\nAda,Design,Morning\n"
    )
    assert summary.imported == 1
    names = sorted(d.name for d in load_snapshot(session).domains)
    assert names == ["Design", "Domain Expert", "Tech"]


def test_import_can_be_disabled(seeded_session, monkeypatch):
    monkeypatch.setenv("APP_ENABLE_CSV_IMPORT", "false")
    reset_settings()
    with pytest.raises(BusinessLogicError):
        app_api.import_students_from_csv(seeded_session, ROSTER)
