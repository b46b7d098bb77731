"""
Enums and constants for integrations.
"""
from enum import Enum


class IntegrationMode(str, Enum):
    """How data reaches the cache. The two modes are mutually exclusive."""
    PULL = "pull"
    PUSH = "push"


class CredentialScope(str, Enum):
    """Who owns the credential for an integration."""
    ORGANIZATION = "organization"
    WIDGET = "widget"


class DiscriminatorType(str, Enum):
    """How broadly a cached fetch result is shared."""
    ORGANIZATION = "organization"
    WIDGET = "widget"
    WIDGET_OPTION = "widget_option"


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    BASIC = "basic"
    OAUTH2 = "oauth2"
    CUSTOM = "custom"


class DataStatus(str, Enum):
    """Outcome of the most recent write to a cache entry."""
    SUCCESS = "success"
    ERROR = "error"


class WebhookAuthMethod(str, Enum):
    HMAC = "hmac"
    API_KEY = "api_key"
    IP_ALLOWLIST = "ip_allowlist"
