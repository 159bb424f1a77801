"""
Core package for gemflows.
Lightweight package init to avoid import cycles.

Consumers should import submodules directly, e.g.:
  from gemflows.core.workflow_loader import load_workflow, Workflow
  from gemflows.core.templating import render_string
  from gemflows.core.engine import Engine, run_workflow
"""

__all__: list[str] = []
