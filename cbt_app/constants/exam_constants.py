"""Exam-related constants shared across core and server layers."""

QUESTION_TYPES: tuple[str, ...] = ("multiple-choice", "true-false", "short-answer")
DIFFICULTY_LEVELS: tuple[str, ...] = ("easy", "medium", "hard")
CLASS_LEVELS: tuple[str, ...] = (
    "JSS1",
    "JSS2",
    "JSS3",
    "SS1",
    "SS2",
    "SS3",
    "WAEC",
    "NECO",
    "GCE WAEC",
    "GCE NECO",
)

OPTION_LETTERS: tuple[str, ...] = ("A", "B", "C", "D", "E", "F", "G", "H")
MIN_MULTIPLE_CHOICE_OPTIONS: int = 2
MAX_MULTIPLE_CHOICE_OPTIONS: int = len(OPTION_LETTERS)
DEFAULT_QUESTION_POINTS: int = 1
DEFAULT_EXAM_DURATION_MINUTES: int = 60
DEFAULT_PASSING_SCORE: int = 60
DEFAULT_DEADLINE_GRACE_SECONDS: int = 30
DEFAULT_TOP_SCORER_COUNT: int = 5
