"""Policy test harness package."""
from harness.config import ConfigurationError, HarnessConfig, load_config  # noqa: F401
from harness.environment import (  # noqa: F401
    ResourceGroupNotFoundError,
    TestEnvironment,
    initialize_test_environment,
)
from harness.orchestrator import run_policy_test, run_suite  # noqa: F401
