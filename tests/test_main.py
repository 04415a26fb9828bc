"""Tests for the command-line parser."""
import pytest

from cramodoro.main import COMMANDS, build_parser, main


def test_every_subcommand_has_a_handler() -> None:
    parser = build_parser()
    subparsers = next(a for a in parser._actions if a.dest == "command")

    assert set(subparsers.choices) == set(COMMANDS)


def test_parse_deck_create() -> None:
    args = build_parser().parse_args(["decks", "create", "Biology", "--pomodoro", "30"])

    assert args.command == "decks"
    assert args.decks_command == "create"
    assert args.name == "Biology"
    assert args.pomodoro == 30
    assert args.rest == 5


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage: cramodoro" in capsys.readouterr().out
