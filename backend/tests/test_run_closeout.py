from __future__ import annotations

import json
from datetime import date

import pytest

from scripts import run_closeout as cli
from studyline.rescheduler import reschedule_engine
from studyline.schedule_models import Task
from studyline.stores import task_store

DAY = date(2025, 6, 2)


def _seed(student: str) -> None:
    task_store.add(
        [
            Task(
                id=f"{student}-{DAY.isoformat()}",
                student_id=student,
                task_date=DAY,
                category="music",
                title="Scales",
            )
        ]
    )


def test_student_requires_date() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["--student", "st050"])


def test_bad_date_is_rejected() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["--date", "02/06/2025"])


def test_single_student_run_prints_outcome(database, capsys) -> None:
    _seed("st050")

    assert cli.main(["--date", DAY.isoformat(), "--student", "st050"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["action"] == "individual_carry_over"
    assert payload["destination_date"] == "2025-06-03"


def test_batch_run_prints_report(database, capsys) -> None:
    _seed("st051")
    _seed("st052")

    assert cli.main(["--date", DAY.isoformat(), "--workers", "1"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert [result["student_id"] for result in payload["results"]] == ["st051", "st052"]


def test_batch_failure_sets_exit_code(database, monkeypatch, capsys) -> None:
    _seed("st053")

    def broken(student_id: str, closing_date: date) -> None:
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(reschedule_engine, "reschedule", broken)

    assert cli.main(["--date", DAY.isoformat(), "--workers", "1"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["results"][0]["error"] == "ledger unavailable"
