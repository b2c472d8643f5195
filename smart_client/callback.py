"""
Loopback redirect receiver.

A small FastAPI app serving the OAuth redirect URI on localhost. Every
callback is forwarded to the client's ``handle_redirect``.
"""

import html

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse

from smart_client.client import SMARTClient
from smart_client.config.logging import configure_logging, get_logger
from smart_client.config.settings import get_settings

logger = get_logger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])

CSP_HEADER = "default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'"

# The implicit grant returns the token in the URL fragment, which browsers
# never send; this page resends it as query string.
FRAGMENT_RELAY_PAGE = """
<!DOCTYPE html>
<html>
<head><title>Completing Authorization</title></head>
<body>
    <p>Completing authorization...</p>
    <script>
        if (window.location.hash.length > 1) {
            window.location.replace(window.location.pathname + "?" + window.location.hash.substring(1));
        }
    </script>
</body>
</html>
"""


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        content=f"""
        <!DOCTYPE html>
        <html>
        <head><title>{title}</title></head>
        <body>
            <h1>{title}</h1>
            <p>{message}</p>
        </body>
        </html>
        """,
        status_code=status_code,
        headers={"Content-Security-Policy": CSP_HEADER},
    )


@router.get("/callback")
async def oauth_callback(request: Request) -> HTMLResponse:
    """Forward the redirect to the client and report the outcome."""
    if not request.query_params:
        return HTMLResponse(content=FRAGMENT_RELAY_PAGE, headers={"Content-Security-Policy": CSP_HEADER})

    client: SMARTClient = request.app.state.client
    handled = await client.handle_redirect(str(request.url))
    if not handled:
        logger.warning("Received redirect without authorization in progress")
        return _page("Invalid Request", "No authorization is in progress.", 400)

    error = request.query_params.get("error")
    if error:
        error_msg = html.escape(request.query_params.get("error_description") or error)
        return _page("Authentication Failed", f"Error: {error_msg}", 400)

    return _page(
        "Authentication Successful",
        "You can close this window and return to your application.",
        200,
    )


def create_callback_app(client: SMARTClient) -> FastAPI:
    """Create the redirect receiver app for ``client``."""
    app = FastAPI(title="SMART Client Callback", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.client = client
    app.include_router(router)
    return app


async def run_callback_server(client: SMARTClient, host: str | None = None, port: int | None = None) -> None:
    """
    Serve the redirect receiver until cancelled.

    Host and port default to the callback settings.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    config = uvicorn.Config(
        create_callback_app(client),
        host=host or settings.callback_host,
        port=port or settings.callback_port,
        log_level=settings.log_level.lower(),
    )
    logger.info("Starting redirect receiver", host=config.host, port=config.port)
    await uvicorn.Server(config).serve()
