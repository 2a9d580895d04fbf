"""Tests for the JSONL audit log."""

import json
from datetime import timedelta

from bouncer.audit.logger import AuditLog
from bouncer.schemas.triage import TriageAction, TriageDecision, VerdictLabel
from fakes import T0, make_message


def _decision(action=TriageAction.KEEP, label=VerdictLabel.UNCERTAIN, reason="hard to say"):
    return TriageDecision(action=action, label=label, reason=reason)


class TestLogDecision:
    def test_entry_fields(self, tmp_path, clock):
        audit = AuditLog(tmp_path / "audit.jsonl", clock=clock)
        message = make_message(uid="7", subject="Leads")

        entry = audit.log_decision(
            message, _decision(TriageAction.BLOCK_BY_CLASSIFICATION, VerdictLabel.SPAM, "cold pitch")
        )

        assert entry.timestamp == T0
        assert entry.message_id == "<7@mail.example>"
        assert entry.sender == "x@ads.example"
        assert entry.subject == "Leads"
        assert entry.label == VerdictLabel.SPAM
        assert entry.action == TriageAction.BLOCK_BY_CLASSIFICATION
        assert entry.reason == "cold pitch"

    def test_falls_back_to_uid_without_message_id(self, tmp_path, clock):
        audit = AuditLog(tmp_path / "audit.jsonl", clock=clock)
        message = make_message(uid="9").model_copy(update={"message_id": ""})

        assert audit.log_decision(message, _decision()).message_id == "9"

    def test_writes_one_json_line_per_entry(self, tmp_path, clock):
        path = tmp_path / "audit.jsonl"
        audit = AuditLog(path, clock=clock)

        audit.log_decision(make_message(uid="1"), _decision())
        audit.log_decision(make_message(uid="2"), _decision())

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["action"] == "keep"

    def test_creates_parent_directory(self, tmp_path, clock):
        audit = AuditLog(tmp_path / "nested" / "dir" / "audit.jsonl", clock=clock)
        audit.log_decision(make_message(), _decision())
        assert (tmp_path / "nested" / "dir" / "audit.jsonl").exists()


class TestReadEntries:
    def test_missing_file_reads_empty(self, tmp_path):
        assert AuditLog(tmp_path / "nope.jsonl").read_entries() == []

    def test_since_and_limit(self, tmp_path, clock):
        audit = AuditLog(tmp_path / "audit.jsonl", clock=clock)
        for uid in ("1", "2", "3"):
            audit.log_decision(make_message(uid=uid), _decision())
            clock.advance(hours=1)

        recent = audit.read_entries(since=T0)
        assert [e.message_id for e in recent] == ["<2@mail.example>", "<3@mail.example>"]

        last = audit.read_entries(limit=1)
        assert [e.message_id for e in last] == ["<3@mail.example>"]

    def test_count_by_action(self, tmp_path, clock):
        audit = AuditLog(tmp_path / "audit.jsonl", clock=clock)
        audit.log_decision(make_message(uid="1"), _decision())
        audit.log_decision(
            make_message(uid="2"), _decision(TriageAction.BLOCK_DENYLISTED, VerdictLabel.SPAM)
        )
        audit.log_decision(make_message(uid="3"), _decision())

        counts = audit.count_by_action(since=T0 - timedelta(minutes=1))

        assert counts[TriageAction.KEEP] == 2
        assert counts[TriageAction.BLOCK_DENYLISTED] == 1
        assert counts[TriageAction.UNBLOCK_GRACE_PERIOD] == 0
