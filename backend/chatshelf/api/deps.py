"""Dependency injection for API routes."""
from chatshelf.core import config as config_module
from chatshelf.services.engine import OrganizationEngine, get_engine


def get_settings():
    """Get application settings."""
    return config_module.settings


def get_organization_engine() -> OrganizationEngine:
    """Get the organization engine shared by all routes."""
    return get_engine()
