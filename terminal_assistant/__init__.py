"""Terminal assistant: answers operational questions by running shell commands."""

__version__ = "0.1.0"
