"""Preflight checks and CLI login helpers."""
from preflight.analyzer import (  # noqa: F401
    PreflightContext,
    PreflightResult,
    ProbeResult,
    build_preflight_context,
    run_preflight,
    print_preflight_report,
)
from preflight.cli_login import (  # noqa: F401
    LoginResult,
    azure_cli_login,
    configure_terraform_credentials,
)
