"""
Business Workflow Engine

Graph model, validator and execution engine for visually authored
automation flows built from Trigger, Delay, Decision and Business nodes.
"""

__version__ = "1.0.0"
