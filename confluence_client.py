"""Confluence REST API client with error mapping, retry logic and rate limiting."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from converters.path_sanitizer import get_mime_type

logger = logging.getLogger('wiki_confluence_migrator.client')

T = TypeVar('T')

MAX_RETRY_AFTER_SECONDS = 60


class ConfluenceApiError(Exception):
    """Base exception for Confluence API failures."""

    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(f"HTTP {status_code}: {message}" if status_code else message)
        self.status_code = status_code
        self.message = message


class ConfluenceAuthError(ConfluenceApiError):
    """Credentials rejected (401) or not allowed (403)."""
    pass


class ConfluenceNotFoundError(ConfluenceApiError):
    """Resource does not exist (404)."""
    pass


class ConfluenceRateLimitError(ConfluenceApiError):
    """Too many requests (429) after the client's own Retry-After waits."""
    pass


def retry_with_backoff(func: Callable[[], T], retries: int = 3, delay: float = 1.0) -> T:
    """
    Call ``func``, retrying on rate limiting with exponential backoff.

    Only :class:`ConfluenceRateLimitError` is retried; the delay doubles
    after each attempt and the last error is re-raised once ``retries``
    attempts are used up.

    Args:
        func: Zero-argument callable
        retries: Total number of attempts
        delay: Initial delay in seconds

    Returns:
        Whatever ``func`` returns
    """
    attempt = 1
    while True:
        try:
            return func()
        except ConfluenceRateLimitError as e:
            if attempt >= retries:
                logger.error(f"Rate limited, giving up after {attempt} attempts: {e}")
                raise
            logger.warning(f"Rate limited, retrying in {delay:.1f}s (attempt {attempt}/{retries})")
            time.sleep(delay)
            delay *= 2
            attempt += 1


class ConfluenceClient:
    """Confluence REST API client used for page and attachment publishing."""

    def __init__(
        self,
        base_url: str,
        space_key: Optional[str] = None,
        context_path: str = '/wiki',
        auth_type: str = 'basic',
        username: Optional[str] = None,
        password: Optional[str] = None,
        api_token: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_factor: float = 2.0,
        rate_limit: float = 0.0
    ):
        """
        Initialize Confluence client with authentication and retry configuration.

        Args:
            base_url: Confluence site URL (e.g., "https://example.atlassian.net")
            space_key: Default space key, used for page links
            context_path: Path prefix of the Confluence application ("/wiki" on Cloud)
            auth_type: "basic" (username + API token or password) or "bearer"
            username: Username or e-mail for basic auth
            password: Password for basic auth when no API token is given
            api_token: API token (basic auth secret on Cloud, bearer token otherwise)
            verify_ssl: Whether to verify SSL certificates
            timeout: HTTP request timeout in seconds
            max_retries: Maximum retry attempts for transient errors
            retry_backoff_factor: Exponential backoff factor
            rate_limit: Minimum seconds between requests (0.0 = no rate limiting)
        """
        if not base_url:
            raise ValueError("Confluence base_url is required")

        self.base_url = base_url.rstrip('/')
        self.context_path = ('/' + context_path.strip('/')) if context_path and context_path.strip('/') else ''
        self.api_url = f"{self.base_url}{self.context_path}/rest/api"
        self.space_key = space_key
        self.auth_type = auth_type
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.rate_limit = rate_limit
        self.last_request_time = 0.0

        self.session = requests.Session()

        if auth_type == 'basic':
            secret = api_token or password
            if not username or not secret:
                raise ValueError("Basic auth requires a username and an API token or password")
            self.session.auth = (username, secret)
            logger.info(f"Initialized Confluence client with Basic auth for {self.base_url}")
        elif auth_type == 'bearer':
            if not api_token:
                raise ValueError("Bearer auth requires api_token")
            self.session.headers['Authorization'] = f'Bearer {api_token}'
            logger.info(f"Initialized Confluence client with Bearer auth for {self.base_url}")
        else:
            raise ValueError(f"Unsupported auth_type: {auth_type}")

        self.session.headers['Accept'] = 'application/json'

        self.session.verify = verify_ssl
        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        # Transient server errors on idempotent requests; 429 is handled in _make_request
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.debug(f"Client configured with api_url={self.api_url}, timeout={timeout}s, "
                     f"max_retries={max_retries}, backoff_factor={retry_backoff_factor}, rate_limit={rate_limit}s")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ConfluenceClient':
        """
        Initialize Confluence client from configuration dictionary.

        Args:
            config: Configuration dictionary with confluence and advanced settings

        Returns:
            ConfluenceClient instance
        """
        confluence_config = config.get('confluence', {})
        advanced_config = config.get('advanced', {})

        return cls(
            base_url=confluence_config.get('base_url'),
            space_key=confluence_config.get('space_key'),
            context_path=confluence_config.get('context_path', '/wiki'),
            auth_type=confluence_config.get('auth_type', 'basic'),
            username=confluence_config.get('username'),
            password=confluence_config.get('password'),
            api_token=confluence_config.get('api_token'),
            verify_ssl=confluence_config.get('verify_ssl', True),
            timeout=advanced_config.get('request_timeout', 30),
            max_retries=advanced_config.get('max_retries', 3),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 2.0),
            rate_limit=advanced_config.get('rate_limit', 0.0)
        )

    def page_url(self, page_id: str, space_key: Optional[str] = None) -> str:
        """Browser URL of a page."""
        return f"{self.base_url}{self.context_path}/spaces/{space_key or self.space_key}/pages/{page_id}"

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting if configured."""
        if self.rate_limit <= 0:
            return

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.rate_limit:
            sleep_time = self.rate_limit - time_since_last
            logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
            time.sleep(sleep_time)

        self.last_request_time = time.time()

    def _make_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Make an HTTP request to the REST API and map failures to exceptions.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Path below ``/rest/api`` (e.g., "/content")
            **kwargs: Additional arguments for requests

        Returns:
            Response object with a 2xx status

        Raises:
            ConfluenceAuthError: 401 or 403
            ConfluenceNotFoundError: 404
            ConfluenceRateLimitError: 429 after waiting out Retry-After
            ConfluenceApiError: Any other HTTP or transport error
        """
        self._enforce_rate_limit()

        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        start_time = time.time()
        logger.debug(f"API Request: {method} {url}")

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            logger.debug(f"API Response: {response.status_code} {url} ({time.time() - start_time:.3f}s)")

            retry_count = 0
            while response.status_code == 429 and retry_count < self.max_retries:
                retry_after = response.headers.get('Retry-After', '1')
                try:
                    wait_time = min(int(retry_after), MAX_RETRY_AFTER_SECONDS)
                except ValueError:
                    wait_time = 1

                retry_count += 1
                logger.warning(f"Rate limited (429): attempt {retry_count}/{self.max_retries}, "
                               f"waiting {wait_time}s before retry")

                response.close()
                time.sleep(wait_time)
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
                logger.debug(f"Retry Response ({retry_count}/{self.max_retries}): {response.status_code} {url}")

        except requests.exceptions.Timeout as e:
            logger.error(f"Request timeout after {self.timeout}s: {method} {url}")
            raise ConfluenceApiError(None, f"Timeout calling {method} {url}: {e}") from e

        except requests.exceptions.RequestException as e:
            logger.error(f"Request error: {method} {url} - {str(e)}")
            raise ConfluenceApiError(None, f"Request error calling {method} {url}: {e}") from e

        finally:
            self.last_request_time = time.time()

        if response.ok:
            return response

        message = self._error_message(response)
        status = response.status_code
        logger.debug(f"HTTP Error {status}: {method} {url} - {message}")

        if status in (401, 403):
            raise ConfluenceAuthError(status, message)
        if status == 404:
            raise ConfluenceNotFoundError(status, message)
        if status == 429:
            logger.error(f"Rate limit exceeded after {self.max_retries} attempts: {url}")
            raise ConfluenceRateLimitError(status, message)
        raise ConfluenceApiError(status, message)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            error_json = response.json()
        except ValueError:
            return (response.text or response.reason or '')[:500]
        if isinstance(error_json, dict):
            return str(error_json.get('message') or error_json.get('error') or error_json)[:500]
        return str(error_json)[:500]

    def _get_paginated(self, endpoint: str, params: Optional[Dict[str, Any]] = None, limit: int = 100) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        start = 0

        while True:
            page_params = dict(params or {})
            page_params.update({'limit': limit, 'start': start})

            data = self._make_request('GET', endpoint, params=page_params).json()
            batch = data.get('results', [])
            results.extend(batch)

            if 'next' not in data.get('_links', {}) or not batch:
                break
            start += len(batch)

        return results

    def get_space(self, space_key: str) -> Dict[str, Any]:
        """
        Fetch a space; used as the authentication pre-flight.

        Raises:
            ConfluenceAuthError: If the credentials are rejected
            ConfluenceNotFoundError: If the space does not exist
        """
        space = self._make_request('GET', f'/space/{space_key}').json()
        logger.info(f"Connected to space '{space.get('key', space_key)}' ({space.get('name', '')})")
        return space

    def get_page_by_title(
        self,
        space_key: str,
        title: str,
        expand: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Find a page by exact title.

        Returns:
            Page dictionary, or None if the space has no such page
        """
        params = {'spaceKey': space_key, 'title': title, 'type': 'page'}
        if expand:
            params['expand'] = expand

        try:
            data = self._make_request('GET', '/content', params=params).json()
        except ConfluenceNotFoundError:
            return None

        results = data.get('results', [])
        return results[0] if results else None

    def get_page_by_id(self, page_id: str, expand: Optional[str] = 'version') -> Dict[str, Any]:
        """Fetch a page; ``expand='version'`` returns the current version number."""
        params = {'expand': expand} if expand else {}
        return self._make_request('GET', f'/content/{page_id}', params=params).json()

    def create_page(
        self,
        title: str,
        space_key: str,
        parent_id: Optional[str],
        body: str
    ) -> Dict[str, Any]:
        """
        Create a page under ``parent_id``.

        Returns:
            Created page dictionary (with ``id``)
        """
        payload: Dict[str, Any] = {
            'type': 'page',
            'title': title,
            'space': {'key': space_key},
            'body': {
                'storage': {
                    'value': body,
                    'representation': 'storage'
                }
            }
        }
        if parent_id:
            payload['ancestors'] = [{'id': str(parent_id)}]

        page = self._make_request('POST', '/content', json=payload).json()
        logger.debug(f"Created page '{title}' ({page.get('id')}) under {parent_id}")
        return page

    def update_page(self, page_id: str, title: str, body: str, version: int) -> Dict[str, Any]:
        """
        Replace a page's title and body.

        Args:
            page_id: Page to update
            title: New title
            body: Storage-format body
            version: New version number (current version + 1)
        """
        payload = {
            'id': str(page_id),
            'type': 'page',
            'title': title,
            'version': {'number': version},
            'body': {
                'storage': {
                    'value': body,
                    'representation': 'storage'
                }
            }
        }
        page = self._make_request('PUT', f'/content/{page_id}', json=payload).json()
        logger.debug(f"Updated page '{title}' ({page_id}) to version {version}")
        return page

    def get_child_pages(self, parent_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """All direct child pages of ``parent_id``."""
        children = self._get_paginated(f'/content/{parent_id}/child/page', limit=limit)
        logger.debug(f"Fetched {len(children)} children for page {parent_id}")
        return children

    def delete_page(self, page_id: str) -> None:
        self._make_request('DELETE', f'/content/{page_id}')
        logger.debug(f"Deleted page {page_id}")

    def get_attachments(self, page_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """All attachments of a page."""
        attachments = self._get_paginated(f'/content/{page_id}/child/attachment', limit=limit)
        logger.debug(f"Fetched {len(attachments)} attachments for page {page_id}")
        return attachments

    def upload_attachment(
        self,
        page_id: str,
        file_path: str,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Upload a file as an attachment of ``page_id``.

        Args:
            page_id: Page to attach to
            file_path: Local file to upload
            file_name: Attachment name on the page (defaults to the file's name)
            mime_type: Content type (derived from the name when omitted)

        Returns:
            Attachment dictionary
        """
        path = Path(file_path)
        name = file_name or path.name
        content_type = mime_type or get_mime_type(name)

        # Read up front so a 429 retry resends the whole file
        with open(path, 'rb') as f:
            content = f.read()

        response = self._make_request(
            'POST',
            f'/content/{page_id}/child/attachment',
            files={'file': (name, content, content_type)},
            data={'minorEdit': 'true'},
            headers={'X-Atlassian-Token': 'nocheck'}
        )

        data = response.json()
        results = data.get('results') if isinstance(data, dict) else None
        attachment = results[0] if results else data
        logger.debug(f"Uploaded attachment '{name}' to page {page_id}")
        return attachment


__all__ = [
    'ConfluenceApiError',
    'ConfluenceAuthError',
    'ConfluenceClient',
    'ConfluenceNotFoundError',
    'ConfluenceRateLimitError',
    'retry_with_backoff'
]
