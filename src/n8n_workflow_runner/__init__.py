"""Package initialization for n8n-workflow-runner.

Run the CLI with `python -m n8n_workflow_runner <command>`; the HTTP API is
built by `n8n_workflow_runner.api.create_app`.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
