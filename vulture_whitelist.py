"""Vulture whitelist — false positives that are actually used by frameworks."""

# ---------------------------------------------------------------------------
# Public API methods on TPPAuth (used by consumers, not internally)
# ---------------------------------------------------------------------------
from tppauth.tppauth import TPPAuth

TPPAuth.on
TPPAuth.add_hook
TPPAuth.hooks
TPPAuth.request_builder
TPPAuth.key_resolver
TPPAuth.client_credentials
TPPAuth.create_authorization_id
TPPAuth.complete_exemption
TPPAuth.sign_detached
TPPAuth.verify_response_signature
TPPAuth.get_jwks

from tppauth.core.session import AuthorizationSession

AuthorizationSession.latest_tokens
AuthorizationSession.remove_incomplete
AuthorizationSession.ensure_all_fresh
AuthorizationSession.clear

# ---------------------------------------------------------------------------
# FastAPI route handlers (registered via decorators, not called directly)
# ---------------------------------------------------------------------------
_.oauth_authorize
_.oauth_callback
_.remove_authorization
_.jwks_endpoint
_.require_authorization

# ---------------------------------------------------------------------------
# Event / dataclass fields (read by hook consumers, not accessed in code)
# ---------------------------------------------------------------------------
_.timestamp
_.exemption
_.signature_verified
