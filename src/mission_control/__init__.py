"""Mission Control - Task dispatch and session-liveness engine.

This package tracks agent tasks through their lifecycle, hands planned tasks
to agent sessions hosted by a remote Gateway, reconciles dispatch failures so
operators can retry them, and derives a live operational status for every
task from its state and the presence of its agent's session.
"""

__version__ = "0.1.0"
