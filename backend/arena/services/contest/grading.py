import random


class Grader:
    """Turns a committed answer into an integer score."""

    def grade(self, participant, answer: dict) -> int:
        raise NotImplementedError


class RandomGrader(Grader):
    # Placeholder until real grading exists: uniform score in [low, high]
    def __init__(self, low: int = 0, high: int = 100, rng=None):
        if high < low:
            raise ValueError(f"RANDOM_SCORE_MAX ({high}) must be >= RANDOM_SCORE_MIN ({low})")
        self.low = low
        self.high = high
        self._rng = rng or random.Random()

    def grade(self, participant, answer):
        return self._rng.randint(self.low, self.high)


class FixedGrader(Grader):
    def __init__(self, score: int = 0):
        self.score = score

    def grade(self, participant, answer):
        return self.score


def get_grader(config) -> Grader:
    name = (config.get('GRADER') or 'random').lower()
    if name == 'random':
        return RandomGrader(int(config.get('RANDOM_SCORE_MIN', 0)), int(config.get('RANDOM_SCORE_MAX', 100)))
    if name == 'fixed':
        return FixedGrader(int(config.get('FIXED_SCORE', 0)))
    raise ValueError(f"Unknown GRADER {name!r}")
