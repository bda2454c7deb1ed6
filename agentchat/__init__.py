"""AgentChat backend - paid agent access and context-composed chat."""

__version__ = "1.0.0"
