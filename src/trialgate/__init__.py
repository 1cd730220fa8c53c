"""
trialgate - Statistical pass/fail decisions for non-deterministic tests.

Run a flaky process many times, stop as soon as the outcome is settled,
and judge the pass rate against a threshold derived from baseline data.
"""

from trialgate.config import RunConfig, RunConfigBuilder
from trialgate.engine import GroupContext, ProbabilisticRun, ProcessContext, run_trials
from trialgate.verdict import Verdict

__version__ = "0.1.0"
__all__ = [
    "GroupContext",
    "ProbabilisticRun",
    "ProcessContext",
    "RunConfig",
    "RunConfigBuilder",
    "Verdict",
    "__version__",
    "run_trials",
]
