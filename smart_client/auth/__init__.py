"""
Authorization: SMART scopes, OAuth2 engines, strategy derivation and the coordinator.
"""

from smart_client.auth.coordinator import AuthCoordinator, AuthSession
from smart_client.auth.oauth import (
    BrowserLoginPresenter,
    ClientCredentialsEngine,
    CodeGrantEngine,
    ImplicitGrantEngine,
    LoginPresenter,
    OAuth2Engine,
    create_pkce_pair,
)
from smart_client.auth.selection import PatientListSelector, PatientSelector
from smart_client.auth.smart import (
    SmartLaunchContext,
    SmartScope,
    SmartScopeCategory,
    parse_smart_scopes,
    scope_for_granularity,
)
from smart_client.auth.strategy import (
    create_engine,
    derive_strategy,
    infer_strategy_kind,
    strategy_from_settings,
)

__all__ = [
    "AuthCoordinator",
    "AuthSession",
    "BrowserLoginPresenter",
    "ClientCredentialsEngine",
    "CodeGrantEngine",
    "ImplicitGrantEngine",
    "LoginPresenter",
    "OAuth2Engine",
    "create_pkce_pair",
    "PatientListSelector",
    "PatientSelector",
    "SmartLaunchContext",
    "SmartScope",
    "SmartScopeCategory",
    "parse_smart_scopes",
    "scope_for_granularity",
    "create_engine",
    "derive_strategy",
    "infer_strategy_kind",
    "strategy_from_settings",
]
