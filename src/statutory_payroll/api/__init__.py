"""HTTP API."""

from statutory_payroll.api.app import create_app

__all__ = ["create_app"]
