"""Prompt text used by the conductor."""

from chatbridge.prompts.conductor import DEFAULT_PHASE_PROMPTS, phase_prompts

__all__ = ["DEFAULT_PHASE_PROMPTS", "phase_prompts"]
