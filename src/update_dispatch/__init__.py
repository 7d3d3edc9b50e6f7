"""Update dispatch for a semantic knowledge graph.

Given a changed subject or property, work out which subjects carry derived
data that may now be stale and queue one update task per page.
"""

__version__ = "0.1.0"
