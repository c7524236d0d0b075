"""Styled terminal output and prompts for az hcimigrate."""

from azext_hcimigrate.ui.console import Console, console

__all__ = ["Console", "console"]
