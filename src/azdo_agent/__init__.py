"""azdo-agent - Self-hosted Azure DevOps agent provisioning

Philosophy:
- Fail fast with helpful guidance
- No retries, no silent recovery: Azure's own error text is shown as-is
- Secrets live in memory for one run and are never written to disk

azdo-agent creates an Azure VM (Linux or Windows), ships the agent installer
to it through ``az vm run-command`` and registers it into an agent pool.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
