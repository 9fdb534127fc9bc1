import logging

import click
import requests
from flask import current_app, g, session

from .exceptions import ApiError, AuthExpiredError, NetworkError

_logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(self, base_url, token=None, timeout=10, http_session=None):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self._owns_session = http_session is None
        self.http = http_session if http_session is not None else requests.Session()

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(self, method, path, data=None, params=None):
        url = f"{self.base_url}{path}"
        _logger.info("[API] -> %s %s params=%s", method, path, params)

        try:
            response = self.http.request(
                method,
                url,
                json=data if method != "GET" else None,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            _logger.warning("[API] network failure on %s %s: %s", method, path, exc)
            raise NetworkError(endpoint=path) from exc

        return self._handle_response(response, path)

    def _handle_response(self, response, path):
        content_type = response.headers.get("content-type", "") or ""
        is_json = "application/json" in content_type

        if not response.ok:
            message = f"HTTP Error: {response.status_code}"
            code = None
            details = None
            if is_json:
                try:
                    body = response.json()
                except ValueError:
                    body = {}
                error = body.get("error") if isinstance(body, dict) else None
                if isinstance(error, dict):
                    message = error.get("message") or "Request failed"
                    code = error.get("code")
                    details = error.get("details")
                elif isinstance(error, str) and error:
                    message = error
                elif isinstance(body, dict) and body.get("message"):
                    message = body["message"]
                else:
                    message = "Request failed"

            _logger.warning("[API] <- %s %s: %s", response.status_code, path, message)
            error_class = AuthExpiredError if response.status_code == 401 else ApiError
            raise error_class(
                message,
                status_code=response.status_code,
                code=code,
                details=details,
                endpoint=path,
            )

        _logger.debug("[API] <- %s %s", response.status_code, path)
        if not is_json:
            return {}

        try:
            body = response.json()
        except ValueError:
            return {}

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    def get(self, path, params=None):
        return self.request("GET", path, params=params)

    def post(self, path, data=None):
        return self.request("POST", path, data=data or {})

    def put(self, path, data=None):
        return self.request("PUT", path, data=data or {})

    def patch(self, path, data=None):
        return self.request("PATCH", path, data=data or {})

    def delete(self, path):
        return self.request("DELETE", path)

    def close(self):
        if self._owns_session:
            self.http.close()


def build_client(app, token=None):
    return ApiClient(
        app.config["API_BASE_URL"],
        token=token,
        timeout=app.config["API_TIMEOUT"],
        http_session=app.extensions.get("fuelsync_http_session"),
    )


def get_api():
    if "api" not in g:
        g.api = build_client(current_app, token=session.get("api_token"))
    return g.api


def close_api(e=None):
    api = g.pop("api", None)
    if api is not None:
        api.close()


@click.command("check-api")
def check_api_command():
    api = build_client(current_app)
    try:
        result = api.get("/health")
    except ApiError as exc:
        click.echo(f"API unreachable at {api.base_url}: {exc.message}")
        raise SystemExit(1)
    finally:
        api.close()
    click.echo(f"API reachable at {api.base_url}: {result}")


@click.command("clear-cache")
def clear_cache_command():
    current_app.extensions["fuelsync_cache"].clear()
    click.echo("Cleared the query cache.")


def init_app(app):
    app.teardown_appcontext(close_api)
    app.cli.add_command(check_api_command)
    app.cli.add_command(clear_cache_command)
