"""
Client constants.

These values are intentionally not configurable via environment variables.
"""

from datetime import datetime, timedelta

# Server metadata
METADATA_PATH = "metadata"

# Media types
FHIR_JSON_CONTENT_TYPE = "application/fhir+json"

# Authorization
DEFAULT_SCOPE = "user/*.* openid profile"
DEFAULT_AUTH_TITLE = "SMART"
OAUTH_URIS_EXTENSION = "http://fhir-registry.smarthealthit.org/StructureDefinition/oauth-uris"
OAUTH_URIS_KEYS = {
    "authorize": "authorize_uri",
    "token": "token_uri",
    "register": "registration_uri",
}

# Requests
REQUEST_TIMEOUT_SECONDS = 30
OAUTH_REQUEST_TIMEOUT_SECONDS = 30.0

# Patient lists
DEFAULT_PAGE_SIZE = 50
MISSING_NAME_SENTINEL = "ZZZ"
MISSING_BIRTHDATE_SENTINEL = datetime(1970, 1, 1) - timedelta(days=70 * 365.25)
PLACEHOLDER_SECTION_TITLE = "↓"
UNNAMED_PATIENT = "Unnamed Patient"
