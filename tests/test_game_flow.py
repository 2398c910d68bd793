from __future__ import annotations

import itertools
import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from game import (  # noqa: E402
    CommitmentEngine,
    CryptoProvider,
    DiceParser,
    FairInteraction,
    GameController,
    GameSession,
    GameUI,
    HelpTableGenerator,
    Party,
    Phase,
    ProbabilityCalculator,
    SecureRandom,
    configure_logging,
    main,
)

CONSTANT_DICE = ["1,1,1,1,1,1", "6,6,6,6,6,6", "3,3,3,3,3,3"]


class ScriptedRandom(SecureRandom):
    """Replays `values` (reduced modulo the requested bound), then falls back to `secrets`."""

    def __init__(self, values: list[int]):
        self.values = list(values)

    def randbelow(self, upper: int) -> int:
        if self.values:
            return self.values.pop(0) % upper
        return super().randbelow(upper)

    def choice(self, options):
        return options[self.randbelow(len(options))]


def scripted_input(tokens: list[str]):
    remaining = list(tokens)

    def read_token(prompt: str) -> str:
        return remaining.pop(0)

    return read_token


def build_controller(args: list[str], tokens: list[str], random_source: SecureRandom) -> GameController:
    dice = DiceParser.parse(args)
    ui = GameUI(scripted_input(tokens))
    interaction = FairInteraction(CommitmentEngine(CryptoProvider(random_source)), ui)
    return GameController(dice, ui, interaction, HelpTableGenerator(), random_source)


def test_human_first_takes_the_six_die_and_wins(capsys) -> None:
    # first-move bit 0, opponent takes die 0, both committed throw values 0
    controller = build_controller(CONSTANT_DICE, ["0", "1", "3", "5"], ScriptedRandom([0, 0, 0, 0]))

    result = controller.run()

    session = result.session
    assert not result.cancelled
    assert result.winner is Party.HUMAN
    assert session.first_mover is Party.HUMAN
    assert session.chosen_die == {Party.HUMAN: 1, Party.OPPONENT: 0}
    assert session.thrown_face == {Party.HUMAN: 6, Party.OPPONENT: 1}
    assert session.phase is Phase.TERMINAL
    out = capsys.readouterr().out
    assert "You won! (6 > 1)" in out
    assert "(0 + 3) mod 6 = 3" in out


def test_opponent_first_then_human_picks_from_remaining(capsys) -> None:
    # first-move bit 1 against guess 0, opponent takes die 2; "2" is then refused
    controller = build_controller(
        CONSTANT_DICE, ["0", "2", "1", "0", "0"], ScriptedRandom([1, 2, 4, 4])
    )

    result = controller.run()

    assert result.session.first_mover is Party.OPPONENT
    assert result.session.used_dice_indices == [2, 1]
    assert result.winner is Party.HUMAN
    out = capsys.readouterr().out
    assert "I make the first move" in out
    assert "Invalid choice" in out


@pytest.mark.parametrize("contributions", [("0", "0"), ("1", "4"), ("5", "2"), ("3", "3")])
def test_six_die_wins_whatever_the_throws(contributions, capsys) -> None:
    # only the first-move bit is scripted; throws use real secure randomness
    controller = build_controller(
        CONSTANT_DICE, ["0", "1", *contributions], ScriptedRandom([0])
    )

    result = controller.run()

    assert result.session.thrown_face[Party.HUMAN] == 6
    assert result.winner is Party.HUMAN


def test_equal_throws_end_in_a_draw(capsys) -> None:
    dice = ["4,4,4,4,4,4", "4,4,4,4,4,4", "4,4,4,4,4,4"]
    controller = build_controller(dice, ["0", "0", "2", "2"], ScriptedRandom([0]))

    result = controller.run()

    assert result.winner is None
    assert result.is_draw
    assert "It's a draw!" in capsys.readouterr().out


def test_two_distinct_dice_are_used_at_resolution(capsys) -> None:
    for _ in range(20):
        controller = build_controller(
            ["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"], [], SecureRandom()
        )
        # cycling 0,1,2 always reaches a free die after a taken one is refused
        tokens = itertools.cycle(["0", "1", "2"])
        controller.ui.read_token = lambda prompt: next(tokens)

        result = controller.run()

        used = result.session.used_dice_indices
        assert len(used) == 2
        assert len(set(used)) == 2
        assert set(used) == set(result.session.chosen_die.values())


@pytest.mark.parametrize(
    "tokens,phase",
    [
        (["x"], Phase.FIRST_MOVE_DECISION),
        (["0", "X"], Phase.DICE_SELECTION),
        (["0", "1", "x"], Phase.THROW_HUMAN),
        (["0", "1", "3", "X"], Phase.THROW_OPPONENT),
    ],
)
def test_exit_cancels_without_a_result_line(tokens, phase, capsys) -> None:
    controller = build_controller(CONSTANT_DICE, tokens, ScriptedRandom([0, 0, 0, 0]))

    result = controller.run()

    assert result.cancelled
    assert result.winner is None
    assert not result.is_draw
    assert result.session.phase is phase
    out = capsys.readouterr().out
    assert "won!" not in out
    assert "draw" not in out


def test_help_and_invalid_tokens_reprompt(capsys) -> None:
    tokens = ["?", "7", "abc", "0", "?", "1", "-1", "3", "5"]
    controller = build_controller(CONSTANT_DICE, tokens, ScriptedRandom([0, 0, 0, 0]))

    result = controller.run()

    assert result.winner is Party.HUMAN
    out = capsys.readouterr().out
    assert "Guess 0 or 1" in out
    assert out.count("Win Probability Table") == 2
    assert out.count("Invalid choice") == 3


def test_session_rejects_reuse_and_backwards_phases() -> None:
    dice = DiceParser.parse(CONSTANT_DICE)
    session = GameSession(dice, ProbabilityCalculator.compute(dice))

    session.take_die(Party.HUMAN, 0)
    with pytest.raises(ValueError):
        session.take_die(Party.OPPONENT, 0)
    with pytest.raises(ValueError):
        session.take_die(Party.HUMAN, 1)
    with pytest.raises(ValueError):
        session.take_die(Party.OPPONENT, 3)
    assert session.available_indices() == [1, 2]

    session.advance(Phase.THROW_HUMAN)
    with pytest.raises(RuntimeError):
        session.advance(Phase.DICE_SELECTION)


def test_oversized_number_is_refused_and_reprompted(capsys) -> None:
    ui = GameUI(scripted_input(["9" * 5000, "1" * 5000, "0001"]))

    choice = ui.get_user_choice("Pick one:", {0: "a", 1: "b"}, lambda: "help")

    assert choice == 1
    assert capsys.readouterr().out.count("Invalid choice") == 2


def test_oversized_throw_contribution_does_not_end_the_game(capsys) -> None:
    tokens = ["0", "1", "9" * 5000, "3", "5"]
    controller = build_controller(CONSTANT_DICE, tokens, ScriptedRandom([0, 0, 0, 0]))

    result = controller.run()

    assert result.winner is Party.HUMAN
    assert "Invalid choice" in capsys.readouterr().out


def test_main_rejects_bad_arguments(capsys) -> None:
    assert main(["1,2,3,4,5,6", "1,2,3,4,5,6"]) == 1
    err = capsys.readouterr().err
    assert "Argument Error" in err


def test_main_rejects_a_face_too_long_to_convert(capsys) -> None:
    assert main(["9" * 5000 + ",1,1,1,1,1", "1,1,1,1,1,1", "2,2,2,2,2,2"]) == 1
    assert "Argument Error" in capsys.readouterr().err


def test_main_exits_cleanly_on_x(capsys) -> None:
    assert main(CONSTANT_DICE, read_token=lambda prompt: "x") == 0
    out = capsys.readouterr().out
    assert "Win Probability Table" in out
    assert "won!" not in out


def test_main_reports_a_broken_commitment(monkeypatch, capsys) -> None:
    monkeypatch.setattr(CryptoProvider, "calculate_hmac", lambda self, key, message_int: "0" * 64)

    assert main(CONSTANT_DICE, read_token=lambda prompt: "0") == 2
    captured = capsys.readouterr()
    assert "Commitment violated" in captured.err
    assert "won!" not in captured.out


def test_main_treats_end_of_input_as_an_interruption(capsys) -> None:
    def read_token(prompt: str) -> str:
        raise EOFError

    assert main(CONSTANT_DICE, read_token=read_token) == 0
    assert "Game interrupted" in capsys.readouterr().out


@pytest.mark.parametrize(
    "name,expected",
    [("DEBUG", logging.DEBUG), ("INFO", logging.INFO), ("BASIC_FORMAT", logging.WARNING), ("LOUD", logging.WARNING)],
)
def test_configure_logging_accepts_only_level_names(monkeypatch, name, expected) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging(name)

    assert calls[0]["level"] == expected
