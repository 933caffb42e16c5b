"""Tests for the command-line interface."""

from __future__ import annotations

from helpers import make_message
from inbox_sync.cli import build_parser, execute
from inbox_sync.core.config import AccountSettings, AppSettings, StorageSettings
from inbox_sync.core.models import Category
from inbox_sync.storage import SqliteMessageIndex


def test_parser_defaults_to_info() -> None:
    args = build_parser().parse_args([])

    assert args.command == "info"
    assert args.limit == 20


def test_info_lists_accounts(capsys) -> None:
    settings = AppSettings(
        accounts=[
            AccountSettings(
                id="work", host="imap.test", username="me@test", password="p"
            )
        ]
    )

    execute(build_parser().parse_args(["info"]), settings)

    output = capsys.readouterr().out
    assert "work: me@test@imap.test:993" in output
    assert "watching all folders" in output
    assert "Slack alerts: off" in output


def test_search_prints_matching_messages(tmp_path, capsys) -> None:
    settings = AppSettings(storage=StorageSettings(db_path=tmp_path / "cli.db"))
    with SqliteMessageIndex(settings.storage) as index:
        lead = make_message("Pricing question", uid=1)
        index.index_message(lead)
        index.index_message(make_message("Lunch", uid=2))
        index.update_category(lead.id, Category.INTERESTED)

    execute(
        build_parser().parse_args(["search", "--category", "interested"]), settings
    )

    output = capsys.readouterr().out
    assert "Showing 1 of 1 message(s):" in output
    assert "Pricing question" in output
    assert "Lunch" not in output


def test_counts_prints_every_category(tmp_path, capsys) -> None:
    settings = AppSettings(storage=StorageSettings(db_path=tmp_path / "cli.db"))

    execute(build_parser().parse_args(["counts"]), settings)

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == len(Category)
    assert lines[0].split()[0] == "Interested"
