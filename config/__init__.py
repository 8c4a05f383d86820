"""Configuration package for the credits API"""
from .settings import Settings, get_settings
from .stripe_config import StripeConfig, get_stripe_config
from .tools_config import TOOLS, ToolConfig, get_tool_config

__all__ = [
    'Settings',
    'get_settings',
    'StripeConfig',
    'get_stripe_config',
    'TOOLS',
    'ToolConfig',
    'get_tool_config',
]
