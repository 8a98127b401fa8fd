"""Prompt templates for LLM interactions.

Modules:
    prompt_templates: Per-mode analysis prompts and message builders
"""
