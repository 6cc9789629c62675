from polybot.utils.logger import FailureStreak, setup_logging

__all__ = ["FailureStreak", "setup_logging"]
