"""Default conductor phase directives."""

from __future__ import annotations

PHASE_1_THINKING = """
Give your thoughts on the user's query before responding.
"""

PHASE_1_RESPONSE = """
Speak to the user.
"""

PHASE_2_DECISION = """
If the user's query could be enhanced by using one of your functions, then use a single tool OR end the conversation turn with a brief message.
"""

PHASE_3_REFLECTION = """
Provide thoughts about the tool call results before proceeding.
"""

PHASE_4_DECISION = """
You MUST choose ONE of the following options: Call another tool, OR end the conversation turn.
"""

DEFAULT_PHASE_PROMPTS: dict[str, str] = {
    "phase_1_thinking": PHASE_1_THINKING,
    "phase_1_response": PHASE_1_RESPONSE,
    "phase_2_decision": PHASE_2_DECISION,
    "phase_3_reflection": PHASE_3_REFLECTION,
    "phase_4_decision": PHASE_4_DECISION,
}


def phase_prompts(overrides: dict[str, str] | None = None) -> dict[str, str]:
    """Return the default directives with any configured *overrides* applied."""
    prompts = dict(DEFAULT_PHASE_PROMPTS)
    for key, text in (overrides or {}).items():
        if key in prompts and text:
            prompts[key] = text
    return prompts
