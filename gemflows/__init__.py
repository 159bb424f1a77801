"""
gemflows - run pre-made AI workflows from YAML recipes.

Consumers should import submodules directly, e.g.:
  from gemflows.core.workflow_loader import load_workflow, Workflow
  from gemflows.core.engine import Engine
"""

__version__ = "0.1.0"

__all__: list[str] = ["__version__"]
