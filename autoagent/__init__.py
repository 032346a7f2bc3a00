"""autoagent: an autonomous agent that plans, analyzes and executes tasks toward a goal."""

__version__ = "0.1.0"
