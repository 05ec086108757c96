"""Prompt catalog and the builders that turn it into agent prompts.

All prompt text lives in ``templates.yaml`` (next to this module) and is
loaded by :class:`PromptCatalog`; users can override any block without
touching the package.
"""

from testgen_agent.prompts.builders import (
    build_merge_assistance_prompt,
    build_merge_instructions_markdown,
    build_perspective_prompt,
    build_test_execution_prompt,
    inject_perspective_table,
)
from testgen_agent.prompts.catalog import PromptCatalog, get_catalog

__all__ = [
    "PromptCatalog",
    "build_merge_assistance_prompt",
    "build_merge_instructions_markdown",
    "build_perspective_prompt",
    "build_test_execution_prompt",
    "get_catalog",
    "inject_perspective_table",
]
