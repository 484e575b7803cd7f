"""Core services: stream interpretation, tool execution, conversation loop, cost."""
