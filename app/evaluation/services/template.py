"""
Prompt template expansion.

Templates reference test case fields through literal tokens such as
``{name}`` or ``{utterance}``. Expansion is a single simultaneous pass: the
template is scanned once and each token occurrence is replaced from the field
table, so a substituted value is never itself re-scanned for tokens.
"""

from __future__ import annotations

import re
from typing import Mapping

from promptlab_core.domain.models import TestCase

# Order in which fields are listed for a test case
TEMPLATE_TOKENS = (
    "{name}",
    "{age}",
    "{about_me}",
    "{conversation_type}",
    "{setting}",
    "{tone}",
    "{utterance}",
)


def fields_for_test_case(test_case: TestCase) -> dict[str, str]:
    """Build the token -> value table for a test case."""
    values = (
        test_case.bio.name,
        str(test_case.bio.age),
        test_case.bio.about_me,
        test_case.context.conversation_type,
        test_case.context.setting,
        test_case.context.tone,
        test_case.utterance,
    )
    return dict(zip(TEMPLATE_TOKENS, values))


def expand_template(template: str, fields: Mapping[str, str]) -> str:
    """
    Replace every occurrence of each token in ``fields`` with its value.

    Args:
        template: Template text.
        fields: Mapping of literal token (e.g. ``"{name}"``) to replacement.

    Returns:
        The expanded text. Text that matches no token is left untouched.

    Example:
        >>> expand_template("Hi {name}, age {age}", {"{name}": "Alice", "{age}": "5"})
        'Hi Alice, age 5'
    """
    tokens = [token for token in fields if token]
    if not tokens:
        return template

    # Longest first, so a token that is a prefix of another never wins
    pattern = re.compile(
        "|".join(re.escape(token) for token in sorted(tokens, key=len, reverse=True))
    )
    return pattern.sub(lambda match: str(fields[match.group(0)]), template)
