"""Handler module whose dependency is missing"""

import missing_dependency_for_tests  # noqa: F401


def handler(event, context):
    return None
