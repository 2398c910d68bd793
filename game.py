import sys
import os
import enum
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Callable, Iterator, Optional, Sequence
from tabulate import tabulate

logger = logging.getLogger(__name__)

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigurationError(Exception):
    """
    Raised when the dice given on the command line cannot be used.
    Renders a formatted message including an example of correct usage.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ConfigurationError._invocation_command = command

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else 'game.py'
        example = (
            f"{ConfigurationError._invocation_command} {script_name} "
            f"2,2,4,4,9,9 6,8,1,1,8,6 7,5,3,7,5,3"
        )
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"


class InvalidInputError(Exception):
    """An interactive token that matches none of the offered choices."""


class CommitmentViolation(Exception):
    """The revealed key and value do not reproduce the published HMAC."""

    def __init__(self, published_tag: str, recomputed_tag: str):
        self.published_tag = published_tag
        self.recomputed_tag = recomputed_tag
        super().__init__(
            f"Commitment violated: published HMAC {published_tag} "
            f"but the revealed value gives {recomputed_tag}"
        )


class GameCancelled(Exception):
    """The human typed 'X' at a decision point."""

# ==============================================================================
# 2. Configuration
# ==============================================================================

FACE_COUNT = 6
MIN_DICE = 3


@dataclass(frozen=True)
class GameConfig:
    face_count: int = FACE_COUNT
    min_dice: int = MIN_DICE
    key_bytes: int = 32
    hmac_digest: str = "sha3_256"
    log_level: str = "WARNING"
    invocation_command: str = "python"

    @classmethod
    def from_env(cls) -> "GameConfig":
        command = 'py' if 'py.exe' in sys.executable.lower() else 'python'
        level = os.environ.get("DICE_GAME_LOG_LEVEL", cls.log_level).upper()
        return cls(log_level=level, invocation_command=command)


def configure_logging(level: str = "WARNING") -> None:
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING
    logging.basicConfig(
        level=numeric_level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

# ==============================================================================
# 3. Data Structures for Dice
# ==============================================================================

@dataclass(frozen=True)
class Die:
    faces: tuple[int, ...]

    def __post_init__(self):
        if not self.faces:
            raise ValueError("A die must have at least one face.")
        object.__setattr__(self, "faces", tuple(self.faces))

    def __str__(self) -> str:
        return ",".join(map(str, self.faces))

    def __len__(self) -> int:
        return len(self.faces)

    def __getitem__(self, position: int) -> int:
        return self.faces[position]


@dataclass(frozen=True)
class DiceSet:
    """Dice in command-line order. A die is identified only by its index here."""
    dice: tuple[Die, ...]

    def __post_init__(self):
        object.__setattr__(self, "dice", tuple(self.dice))
        if len(self.dice) < MIN_DICE:
            raise ConfigurationError(f"Please specify at least {MIN_DICE} dice.")
        for die in self.dice:
            if len(die) != FACE_COUNT:
                raise ConfigurationError(
                    f"Each die must have exactly {FACE_COUNT} faces. Invalid input: {die}"
                )

    def __len__(self) -> int:
        return len(self.dice)

    def __getitem__(self, index: int) -> Die:
        return self.dice[index]

    def __iter__(self) -> Iterator[Die]:
        return iter(self.dice)

    def indices(self) -> list[int]:
        return list(range(len(self.dice)))

# ==============================================================================
# 4. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: Sequence[str], config: GameConfig = GameConfig()) -> DiceSet:
        if len(args) < config.min_dice:
            raise ConfigurationError(
                f"Please specify at least {config.min_dice} dice (got {len(args)})."
            )
        return DiceSet(tuple(DiceParser._parse_die(arg, config) for arg in args))

    @staticmethod
    def _parse_die(arg: str, config: GameConfig) -> Die:
        values = arg.split(',')
        # isdecimal() alone would accept non-ASCII digits
        if not all(v.isascii() and v.isdecimal() for v in values):
            raise ConfigurationError(
                f"Dice faces must be non-negative integers. Invalid input: {arg}"
            )
        if len(values) != config.face_count:
            raise ConfigurationError(
                f"Each die must have exactly {config.face_count} faces. Invalid input: {arg}"
            )
        try:
            return Die(tuple(int(v) for v in values))
        except ValueError:
            # longer than the interpreter's integer-string limit
            raise ConfigurationError(f"Dice face is too large. Invalid input: {arg}")

# ==============================================================================
# 5. Cryptographic Operations Provider
# ==============================================================================

class SecureRandom:
    """The process's source of unpredictable numbers, backed by `secrets`."""

    def randbelow(self, upper: int) -> int:
        return secrets.randbelow(upper)

    def token_bytes(self, length: int) -> bytes:
        return secrets.token_bytes(length)

    def choice(self, options: Sequence):
        return secrets.choice(options)


class CryptoProvider:
    def __init__(self, random_source: Optional[SecureRandom] = None, config: GameConfig = GameConfig()):
        self.random = random_source if random_source is not None else SecureRandom()
        self.config = config

    def generate_key(self) -> bytes:
        return self.random.token_bytes(self.config.key_bytes)

    def generate_secure_random(self, max_val: int) -> int:
        return self.random.randbelow(max_val)

    def calculate_hmac(self, key: bytes, message_int: int) -> str:
        return calculate_hmac(key, message_int, self.config.hmac_digest)


def calculate_hmac(key: bytes, message_int: int, digest: str = "sha3_256") -> str:
    message_bytes = str(message_int).encode('utf-8')
    return hmac.new(key, message_bytes, digest).hexdigest().upper()


def verify_commitment(tag: str, key: bytes, value: int, digest: str = "sha3_256") -> bool:
    """Check a published HMAC against a revealed key and value. Usable by any observer."""
    return hmac.compare_digest(tag.upper(), calculate_hmac(key, value, digest))

# ==============================================================================
# 6. Commitment Engine
# ==============================================================================

@dataclass
class Commitment:
    """
    A value bound to a published HMAC before the counterpart answers.

    `range` and `tag` may be shown right away; `key` and the value stay
    private until `reveal()`.
    """
    range: int
    tag: str
    _value: int = field(repr=False)
    _key: bytes = field(repr=False)
    digest: str = "sha3_256"
    revealed: bool = False

    def reveal(self) -> tuple[int, bytes]:
        self.revealed = True
        return self._value, self._key

    def verify(self) -> bool:
        return verify_commitment(self.tag, self._key, self._value, self.digest)


class CommitmentEngine:
    def __init__(self, crypto: CryptoProvider):
        self.crypto = crypto

    def commit(self, range_size: int) -> Commitment:
        if isinstance(range_size, bool) or not isinstance(range_size, int) or range_size < 1:
            raise ValueError(f"Commitment range must be a positive integer, got {range_size!r}")
        value = self.crypto.generate_secure_random(range_size)
        key = self.crypto.generate_key()
        tag = self.crypto.calculate_hmac(key, value)
        logger.debug("Committed to a value in 0..%d (HMAC=%s)", range_size - 1, tag)
        return Commitment(
            range=range_size,
            tag=tag,
            _value=value,
            _key=key,
            digest=self.crypto.config.hmac_digest,
        )

# ==============================================================================
# 7. Probability Calculation Logic
# ==============================================================================

@dataclass(frozen=True)
class ProbabilityMatrix:
    """rows[i][j] is the chance die i shows a strictly higher face than die j."""
    rows: tuple[tuple[Fraction, ...], ...]

    @property
    def size(self) -> int:
        return len(self.rows)

    def __getitem__(self, i: int) -> tuple[Fraction, ...]:
        return self.rows[i]


class ProbabilityCalculator:
    @staticmethod
    def calculate_win_probability(die1: Die, die2: Die) -> Fraction:
        wins = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)
        return Fraction(wins, len(die1) * len(die2))

    @staticmethod
    def compute(dice: DiceSet) -> ProbabilityMatrix:
        rows = tuple(
            tuple(
                Fraction(0) if i == j else ProbabilityCalculator.calculate_win_probability(a, b)
                for j, b in enumerate(dice)
            )
            for i, a in enumerate(dice)
        )
        return ProbabilityMatrix(rows)

# ==============================================================================
# 8. Help Table Generation
# ==============================================================================

class HelpTableGenerator:
    DIAGONAL = "-"

    @staticmethod
    def format_probability(prob: Fraction) -> str:
        return f"{float(prob) * 100:.1f}%"

    def generate_table(self, all_dice: DiceSet, matrix: ProbabilityMatrix) -> str:
        headers = ["User v PC >"] + [str(d) for d in all_dice]
        table_data = []
        for i, user_die in enumerate(all_dice):
            row = [str(user_die)]
            for j in range(len(all_dice)):
                row.append(self.DIAGONAL if i == j else self.format_probability(matrix[i][j]))
            table_data.append(row)

        intro = (
            "\n--- Win Probability Table ---\n"
            "This table shows the probability of the User's die (rows) winning against the PC's die (columns).\n"
        )
        return intro + tabulate(table_data, headers=headers, tablefmt="grid")

# ==============================================================================
# 9. Console User Interface
# ==============================================================================

DecisionSource = Callable[[str], str]


class GameUI:
    def __init__(self, read_token: DecisionSource = input):
        self.read_token = read_token

    def display_message(self, text: str):
        print(text)

    def display_hmac(self, hmac_hex: str):
        print(f"HMAC: {hmac_hex}")

    def display_key_and_move(self, key: bytes, move: int, name: str = "My choice"):
        print(f"{name}: {move} (KEY={key.hex().upper()})")

    def get_user_choice(self, prompt: str, options: dict[int, str], help_text: Callable[[], str]) -> int:
        """
        Ask until one of `options` (keyed by the number the user types) is picked.
        '?' shows `help_text()`, 'X' raises GameCancelled.
        """
        while True:
            print(f"\n{prompt}")
            for number, label in options.items():
                print(f" {number} - {label}")
            print("\n X - Exit")
            print(" ? - Help")

            token = self.read_token("Your choice: ").strip().lower()
            if token == 'x':
                raise GameCancelled()
            if token == '?':
                print(help_text())
                continue
            try:
                return self._interpret(token, options)
            except InvalidInputError as e:
                logger.info("Rejected input %r: %s", token, e)
                print("Invalid choice. Please enter one of the listed numbers, '?', or 'X'.")

    @staticmethod
    def _interpret(token: str, options: dict[int, str]) -> int:
        if not (token.isascii() and token.isdecimal()):
            raise InvalidInputError("not a number")
        digits = token.lstrip("0") or "0"
        if len(digits) > len(str(max(options))):
            raise InvalidInputError("too many digits")
        number = int(digits)
        if number not in options:
            raise InvalidInputError(f"{number} is not offered")
        return number

# ==============================================================================
# 10. Provably Fair Random Number Generation
# ==============================================================================

@dataclass(frozen=True)
class AgreementResult:
    own_value: int
    counterpart_contribution: int
    combined_index: int
    range: int


class FairInteraction:
    def __init__(self, engine: CommitmentEngine, ui: GameUI):
        self.engine = engine
        self.ui = ui

    def agree(self, range_size: int, prompt: str, help_text: Callable[[], str],
              name: str = "My number") -> AgreementResult:
        # the contribution is read before anything about the value is revealed
        commitment = self.engine.commit(range_size)
        self.ui.display_message(f"I have chosen a random value in range 0..{range_size - 1}.")
        self.ui.display_hmac(commitment.tag)

        options = {i: str(i) for i in range(range_size)}
        contribution = self.ui.get_user_choice(prompt, options, help_text)

        value, key = commitment.reveal()
        self.ui.display_key_and_move(key, value, name=name)
        if not commitment.verify():
            raise CommitmentViolation(
                commitment.tag, calculate_hmac(key, value, commitment.digest)
            )

        combined = (value + contribution) % range_size
        logger.debug("Agreed on %d: (%d + %d) mod %d", combined, value, contribution, range_size)
        return AgreementResult(value, contribution, combined, range_size)

    def determine_first_player(self) -> bool:
        """Returns True when the human guessed the committed bit and moves first."""
        self.ui.display_message("\nLet's determine who makes the first move.")
        result = self.agree(
            2,
            "Try to guess my selection.",
            lambda: "Guess 0 or 1. Guess right and you choose your die first.",
            name="My selection",
        )
        # guess == committed bit exactly when the sum is even
        return result.combined_index == 0

    def roll(self, die: Die) -> int:
        num_faces = len(die)
        result = self.agree(
            num_faces,
            f"Add your number modulo {num_faces}.",
            lambda: (
                f"Pick any number from 0 to {num_faces - 1}. It is added to my hidden number "
                f"modulo {num_faces} to pick the face; check my HMAC with the key I reveal."
            ),
        )
        self.ui.display_message(
            f"The fair number generation result is "
            f"({result.own_value} + {result.counterpart_contribution}) mod {num_faces} "
            f"= {result.combined_index}."
        )
        return die[result.combined_index]

# ==============================================================================
# 11. Game Session and Turn State Machine
# ==============================================================================

class Party(enum.Enum):
    HUMAN = "human"
    OPPONENT = "opponent"

    def other(self) -> "Party":
        return Party.OPPONENT if self is Party.HUMAN else Party.HUMAN


class Phase(enum.IntEnum):
    INIT = 0
    FIRST_MOVE_DECISION = 1
    # one selection phase: either party may pick first
    DICE_SELECTION = 2
    THROW_HUMAN = 3
    THROW_OPPONENT = 4
    RESOLUTION = 5
    TERMINAL = 6


@dataclass
class GameSession:
    dice: DiceSet
    matrix: ProbabilityMatrix
    phase: Phase = Phase.INIT
    used_dice_indices: list[int] = field(default_factory=list)
    first_mover: Optional[Party] = None
    chosen_die: dict[Party, int] = field(default_factory=dict)
    thrown_face: dict[Party, int] = field(default_factory=dict)

    def advance(self, phase: Phase):
        if phase < self.phase:
            raise RuntimeError(f"Cannot go back from {self.phase.name} to {phase.name}")
        logger.debug("Phase %s -> %s", self.phase.name, phase.name)
        self.phase = phase

    def available_indices(self) -> list[int]:
        return [i for i in self.dice.indices() if i not in self.used_dice_indices]

    def take_die(self, party: Party, index: int):
        if party in self.chosen_die:
            raise ValueError(f"{party.value} has already chosen a die")
        if index not in self.available_indices():
            raise ValueError(f"Die {index} is not available")
        self.used_dice_indices.append(index)
        self.chosen_die[party] = index

    def die_of(self, party: Party) -> Die:
        return self.dice[self.chosen_die[party]]


@dataclass(frozen=True)
class GameResult:
    session: GameSession
    winner: Optional[Party] = None
    cancelled: bool = False

    @property
    def is_draw(self) -> bool:
        return not self.cancelled and self.winner is None

# ==============================================================================
# 12. Main Game Controller
# ==============================================================================

class GameController:
    def __init__(self, dice: DiceSet, ui: GameUI, interaction: FairInteraction,
                 help_gen: HelpTableGenerator, random_source: Optional[SecureRandom] = None):
        self.all_dice = dice
        self.ui = ui
        self.interaction = interaction
        self.help_gen = help_gen
        self.random = random_source if random_source is not None else SecureRandom()

    def run(self) -> GameResult:
        session = GameSession(self.all_dice, ProbabilityCalculator.compute(self.all_dice))
        self.ui.display_message("--- Welcome to the Non-Transitive Dice Game! ---")
        self.ui.display_message(self._table(session))
        try:
            winner = self._play(session)
        except GameCancelled:
            logger.debug("Game cancelled during %s", session.phase.name)
            return GameResult(session, cancelled=True)
        return GameResult(session, winner=winner)

    def _play(self, session: GameSession) -> Optional[Party]:
        session.advance(Phase.FIRST_MOVE_DECISION)
        user_goes_first = self.interaction.determine_first_player()
        session.first_mover = Party.HUMAN if user_goes_first else Party.OPPONENT

        session.advance(Phase.DICE_SELECTION)
        self._select_dice(session)
        self.ui.display_message(f"\nYour die: [{session.die_of(Party.HUMAN)}]")
        self.ui.display_message(f"My die:   [{session.die_of(Party.OPPONENT)}]")

        session.advance(Phase.THROW_HUMAN)
        self.ui.display_message("\n--- Time to roll! ---")
        self.ui.display_message("\nIt is your time to roll.")
        session.thrown_face[Party.HUMAN] = self.interaction.roll(session.die_of(Party.HUMAN))
        self.ui.display_message(f"Your throw is {session.thrown_face[Party.HUMAN]}.")

        session.advance(Phase.THROW_OPPONENT)
        self.ui.display_message("\nIt is my time to roll.")
        session.thrown_face[Party.OPPONENT] = self.interaction.roll(session.die_of(Party.OPPONENT))
        self.ui.display_message(f"My throw is {session.thrown_face[Party.OPPONENT]}.")

        session.advance(Phase.RESOLUTION)
        winner = self._resolve(session)
        session.advance(Phase.TERMINAL)
        return winner

    def _select_dice(self, session: GameSession):
        if session.first_mover is Party.HUMAN:
            self.ui.display_message("You make the first move and choose the dice.")
            session.take_die(Party.HUMAN, self._get_player_die_choice(session))
            session.take_die(Party.OPPONENT, self._choose_computer_die(session))
        else:
            self.ui.display_message("I make the first move and choose the dice.")
            session.take_die(Party.OPPONENT, self._choose_computer_die(session))
            session.take_die(Party.HUMAN, self._get_player_die_choice(session))

    def _choose_computer_die(self, session: GameSession) -> int:
        index = self.random.choice(session.available_indices())
        logger.debug("Opponent picked die %d", index)
        self.ui.display_message(f"I choose the [{self.all_dice[index]}] dice.")
        return index

    def _get_player_die_choice(self, session: GameSession) -> int:
        options = {i: str(self.all_dice[i]) for i in session.available_indices()}
        index = self.ui.get_user_choice("Choose your dice:", options, lambda: self._table(session))
        self.ui.display_message(f"You choose the [{self.all_dice[index]}] dice.")
        return index

    def _resolve(self, session: GameSession) -> Optional[Party]:
        player_roll = session.thrown_face[Party.HUMAN]
        computer_roll = session.thrown_face[Party.OPPONENT]
        self.ui.display_message("\n--- Results ---")
        if player_roll > computer_roll:
            winner = Party.HUMAN
            self.ui.display_message(f"You won! ({player_roll} > {computer_roll})")
        elif computer_roll > player_roll:
            winner = Party.OPPONENT
            self.ui.display_message(f"I won! ({computer_roll} > {player_roll})")
        else:
            winner = None
            self.ui.display_message("It's a draw!")
        logger.debug("Resolved %d vs %d, winner=%s", player_roll, computer_roll, winner)
        return winner

    def _table(self, session: GameSession) -> str:
        return self.help_gen.generate_table(session.dice, session.matrix)

# ==============================================================================
# 13. Main Execution Block
# ==============================================================================

def main(argv: Optional[Sequence[str]] = None, read_token: DecisionSource = input) -> int:
    config = GameConfig.from_env()
    configure_logging(config.log_level)
    ConfigurationError.set_invocation_command(config.invocation_command)

    args = list(sys.argv[1:] if argv is None else argv)
    try:
        dice = DiceParser.parse(args, config)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    random_source = SecureRandom()
    ui = GameUI(read_token)
    crypto = CryptoProvider(random_source, config)
    interaction = FairInteraction(CommitmentEngine(crypto), ui)
    controller = GameController(dice, ui, interaction, HelpTableGenerator(), random_source)

    try:
        controller.run()
    except CommitmentViolation as e:
        print(e, file=sys.stderr)
        return 2
    except (KeyboardInterrupt, EOFError):
        print("\nGame interrupted. Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
