from __future__ import annotations


class ComplianceAssertionError(AssertionError):
    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected compliance state '{expected}', got '{actual or '(none)'}'")


def assert_compliance(expected: str, actual: str | None) -> None:
    """Plain string equality; surrounding whitespace is ignored, case is not."""
    if actual is None or expected.strip() != actual.strip():
        raise ComplianceAssertionError(expected, actual)
