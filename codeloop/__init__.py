"""Terminal AI coding assistant with an agentic tool-calling loop."""

__version__ = "0.1.0"
