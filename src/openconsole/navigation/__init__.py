"""Navigation orchestration and readiness waits."""

from openconsole.navigation.console import BestEffortOutcome, ConsoleNavigator
from openconsole.navigation.polling import poll_until
from openconsole.navigation.readiness import ReadinessWaiter

__all__ = ["BestEffortOutcome", "ConsoleNavigator", "ReadinessWaiter", "poll_until"]
