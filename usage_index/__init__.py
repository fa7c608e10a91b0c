"""
usage-index: incremental token usage index for agent JSONL logs.
"""

__version__ = "0.1.0"
