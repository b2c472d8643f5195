"""
Authorization strategy derivation.

Deciding which grant to use is a pure function of the auth settings and,
once fetched, the security block of the server's capability statement.
"""

from typing import Any

from smart_client.auth.oauth import (
    ClientCredentialsEngine,
    CodeGrantEngine,
    ImplicitGrantEngine,
    OAuth2Engine,
)
from smart_client.config.logging import get_logger
from smart_client.errors import NoAuthorizationMethodError
from smart_client.models.auth import AuthSettings, AuthStrategyKind
from smart_client.models.capability import RestSecurity

logger = get_logger(__name__)

_ENGINES: dict[AuthStrategyKind, type[OAuth2Engine]] = {
    AuthStrategyKind.CODE_GRANT: CodeGrantEngine,
    AuthStrategyKind.IMPLICIT_GRANT: ImplicitGrantEngine,
    AuthStrategyKind.CLIENT_CREDENTIALS: ClientCredentialsEngine,
}


def parse_strategy_kind(value: str) -> AuthStrategyKind:
    """
    Parse an explicit ``authorize_type`` setting.

    Raises:
        NoAuthorizationMethodError: If the value names no known grant
    """
    try:
        return AuthStrategyKind(value)
    except ValueError as e:
        raise NoAuthorizationMethodError(f"Unsupported authorize_type: {value}") from e


def infer_strategy_kind(settings: AuthSettings) -> AuthStrategyKind:
    """
    Infer the grant type from auth settings.

    An explicit ``authorize_type`` is honored as given. Otherwise a token URI
    means code grant, an authorize URI alone means implicit grant, and no
    URIs mean no authorization.
    """
    if settings.authorize_type:
        return parse_strategy_kind(settings.authorize_type)
    if settings.authorize_uri:
        if settings.token_uri:
            return AuthStrategyKind.CODE_GRANT
        return AuthStrategyKind.IMPLICIT_GRANT
    return AuthStrategyKind.NONE


def strategy_from_settings(settings: AuthSettings) -> AuthStrategyKind | None:
    """
    Derive the grant type from settings alone, before any server metadata is known.

    Returns:
        The grant type, or None if the settings say nothing about authorization
        and the capability statement must be consulted
    """
    if not settings.authorize_type and not settings.authorize_uri:
        return None
    return infer_strategy_kind(settings)


def derive_strategy(
    security: RestSecurity | None,
    settings: AuthSettings,
) -> tuple[AuthStrategyKind, AuthSettings]:
    """
    Derive the grant type and effective settings from capability security metadata.

    OAuth2 endpoint URIs found in the security extensions fill in the
    settings; URIs given explicitly in the settings take precedence.

    Args:
        security: Security block of the capability REST entry, if any
        settings: The caller's auth settings

    Returns:
        Tuple of (strategy kind, merged settings)
    """
    discovered: dict[str, Any] = security.oauth_uris() if security else {}
    merged = settings.with_defaults(discovered)
    kind = infer_strategy_kind(merged)

    if kind == AuthStrategyKind.NONE and security is not None and security.service:
        logger.warning("Unsupported security services, will proceed without authorization method")

    logger.debug(
        "Derived authorization strategy",
        kind=kind.value,
        authorize_uri=merged.authorize_uri,
        token_uri=merged.token_uri,
    )
    return kind, merged


def create_engine(kind: AuthStrategyKind, settings: AuthSettings, **kwargs: Any) -> OAuth2Engine | None:
    """
    Create the OAuth2 engine for a grant type.

    Returns:
        The engine, or None for servers without authorization
    """
    engine_cls = _ENGINES.get(kind)
    if engine_cls is None:
        return None
    return engine_cls(settings, **kwargs)
