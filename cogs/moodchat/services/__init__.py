"""Services module - Exchange engine and upstream capabilities."""

from .gateway_client import GatewayClient
from .model_catalog import ModelCatalog
from .provider_router import ProviderRouter
from .response_decoder import decode_response
from .session_controller import SessionController
from .session_manager import SessionManager
from .token_accountant import build_usage_snapshot, estimate_tokens, get_context_limit

__all__ = [
    'GatewayClient',
    'ModelCatalog',
    'ProviderRouter',
    'decode_response',
    'SessionController',
    'SessionManager',
    'build_usage_snapshot',
    'estimate_tokens',
    'get_context_limit',
]
