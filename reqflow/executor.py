"""reqflow executor - HTTP request execution."""

import datetime
import json
import logging
import time
from typing import Any

import requests
from requests.cookies import RequestsCookieJar

logger = logging.getLogger(__name__)


class RequestResult:
    """Result of an HTTP request."""

    def __init__(self):
        self.status_code: int = 0
        self.reason: str = ""
        self.headers: dict[str, str] = {}
        self.body: Any = None  # parsed JSON or raw text
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self.raw_text: str = ""
        self.send_time: datetime.datetime | None = None
        self.recv_time: datetime.datetime | None = None

    def snapshot(self) -> dict:
        """Response data as recorded in history."""
        return {
            "status_code": self.status_code,
            "reason": self.reason,
            "headers": dict(self.headers),
            "body": self.raw_text,
        }


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def execute_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: str | None = None,
    cookie_jar: RequestsCookieJar | None = None,
    timeout: int = 30,
) -> RequestResult:
    """Execute an HTTP request and return structured result.

    - Sends cookies from cookie_jar and stores any Set-Cookie back into it
      (in place, including cookies set during redirects)
    - Attempts to parse response as JSON, falls back to raw text
    - Records send and receive times
    - Never raises - transport failures set the error field; a 4xx/5xx
      response is not an error here
    """
    result = RequestResult()

    try:
        with requests.Session() as session:
            if cookie_jar is not None:
                session.cookies = cookie_jar

            logger.debug("sending %s %s", method.upper(), url)
            result.send_time = _now()
            start = time.monotonic()
            resp = session.request(
                method=method.upper(),
                url=url,
                headers=headers,
                data=body.encode("utf-8") if body else None,
                timeout=timeout,
                allow_redirects=True,
            )
            result.elapsed_ms = (time.monotonic() - start) * 1000
            result.recv_time = _now()

        result.status_code = resp.status_code
        result.reason = resp.reason or ""
        result.headers = dict(resp.headers)
        result.raw_text = resp.text

        try:
            result.body = resp.json()
        except (json.JSONDecodeError, ValueError):
            result.body = resp.text

    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
    except Exception as e:
        result.error = f"Unexpected error: {e}"

    if result.error:
        result.recv_time = _now()
        logger.debug("send failed: %s", result.error)

    return result
