"""quizrank: adaptive ELO rating and item-selection engine."""

__version__ = "1.0.0"
