"""
OAuth2 broker endpoints using Starlette.

Implements:
- Authorization Server Metadata (RFC 8414)
- Protected Resource Metadata (RFC 9728)
- Dynamic Client Registration (RFC 7591)
- Authorization endpoint (redirects to the upstream provider)
- Upstream callback
- Token endpoint
- Directly-tested flow entry point
"""

import logging

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from oauth_broker.auth.broker import AuthorizationBroker, append_query
from oauth_broker.auth.clients import DeliveryMode
from oauth_broker.auth.models import (
    AuthorizationRequest,
    CallbackRequest,
    ClientRegistrationRequest,
    TokenRequest,
)
from oauth_broker.core.constants import (
    HTTP_CREATED,
    HTTP_FOUND,
    HTTP_SERVER_ERROR,
    NO_STORE_HEADERS,
)
from oauth_broker.core.decorators import track_request
from oauth_broker.core.exceptions import InvalidRequest, OAuthError

logger = logging.getLogger(__name__)


def error_response(exc: OAuthError, *, no_store: bool = False) -> Response:
    """Deliver an OAuth error by redirect when it carries a target, else as JSON."""
    if exc.redirect_uri:
        url = append_query(
            exc.redirect_uri,
            {
                "error": exc.error,
                "error_description": exc.description,
                "state": exc.state,
            },
        )
        return RedirectResponse(url=url, status_code=HTTP_FOUND)
    return JSONResponse(
        exc.to_dict(),
        status_code=exc.status_code,
        headers=NO_STORE_HEADERS if no_store else None,
    )


def server_error_response() -> JSONResponse:
    # Never leak internal details to the client
    return JSONResponse(
        {"error": "server_error", "error_description": "Internal server error"},
        status_code=HTTP_SERVER_ERROR,
    )


# OAuth2 endpoint handlers
async def authorization_server_metadata(
    request: Request, broker: AuthorizationBroker
) -> Response:
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return JSONResponse(broker.get_authorization_server_metadata())


async def protected_resource_metadata(
    request: Request, broker: AuthorizationBroker, resource_url: str
) -> Response:
    """Protected Resource Metadata (RFC 9728)."""
    return JSONResponse(broker.get_protected_resource_metadata(resource_url))


@track_request("register")
async def register_client(request: Request, broker: AuthorizationBroker) -> Response:
    """Dynamic Client Registration (RFC 7591)."""
    try:
        try:
            body = await request.json()
            req = ClientRegistrationRequest.model_validate(body)
        except (ValueError, ValidationError) as e:
            raise InvalidRequest("Invalid client metadata") from e
        response = broker.register_client(req)
        return JSONResponse(
            response.model_dump(exclude_none=True), status_code=HTTP_CREATED
        )
    except OAuthError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unexpected error during client registration")
        return server_error_response()


@track_request("authorize")
async def authorize(request: Request, broker: AuthorizationBroker) -> Response:
    """Authorization endpoint - validates the request and redirects upstream."""
    try:
        auth_request = AuthorizationRequest.from_params(request.query_params)
        upstream_url = await broker.authorize(auth_request)
        return RedirectResponse(url=upstream_url, status_code=HTTP_FOUND)
    except OAuthError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unexpected error in authorization endpoint")
        return server_error_response()


@track_request("callback")
async def callback(request: Request, broker: AuthorizationBroker) -> Response:
    """Upstream callback - completes the upstream leg and answers the client."""
    try:
        callback_request = CallbackRequest.from_params(request.query_params)
        result = await broker.handle_callback(callback_request)
        if result.mode is DeliveryMode.FORWARD_CODE:
            return RedirectResponse(url=result.redirect_url, status_code=HTTP_FOUND)
        return JSONResponse(result.payload, headers=NO_STORE_HEADERS)
    except OAuthError as e:
        return error_response(e, no_store=True)
    except Exception:
        logger.exception("Unexpected error in callback endpoint")
        return server_error_response()


@track_request("token")
async def token_endpoint(request: Request, broker: AuthorizationBroker) -> Response:
    """Token endpoint - exchanges a broker code for tokens."""
    try:
        form = await request.form()
        token_request = TokenRequest.from_params(form)
        response = await broker.exchange_token(token_request)
        return JSONResponse(response.to_dict(), headers=NO_STORE_HEADERS)
    except OAuthError as e:
        # Token errors are always JSON, never redirects
        e.redirect_uri = None
        return error_response(e, no_store=True)
    except Exception:
        logger.exception("Unexpected error in token endpoint")
        return server_error_response()


@track_request("test-oauth")
async def test_oauth(request: Request, broker: AuthorizationBroker) -> Response:
    """Start a directly-tested flow that returns tokens at the callback."""
    try:
        upstream_url = await broker.start_direct_flow()
        return RedirectResponse(url=upstream_url, status_code=HTTP_FOUND)
    except Exception:
        logger.exception("Unable to start directly-tested flow")
        return server_error_response()


async def health(request: Request) -> Response:
    """Liveness probe."""
    return JSONResponse({"status": "ok"})
