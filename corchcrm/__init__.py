"""CorchCRM orchestrator: turns business interactions into proposed CRM actions."""

__version__ = "1.0.0"
