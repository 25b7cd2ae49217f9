"""
Firebase REST adapters for the provisioning collaborators.

FirestoreDocumentStore talks to the Cloud Firestore REST API and
RealtimeDatabaseStore to the Realtime Database REST API. Every backend
failure is surfaced as a TransportError carrying a transport code.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from pillhub.storage.base import DocumentStore, RealtimeStore, TransportError

logger = logging.getLogger(__name__)

FIRESTORE_API = "https://firestore.googleapis.com/v1"

HTTP_STATUS_CODES = {
    400: "invalid-argument",
    401: "permission-denied",
    403: "permission-denied",
    404: "not-found",
    409: "aborted",
    412: "failed-precondition",
    429: "resource-exhausted",
    504: "deadline-exceeded",
}


def transport_code_for_status(status: int, rpc_status: Optional[str] = None) -> str:
    """
    Map an HTTP status (and optional RPC status name) to a transport code.

    RPC status names such as 'PERMISSION_DENIED' win over the HTTP status.
    """
    if rpc_status:
        return rpc_status.lower().replace("_", "-")
    if status in HTTP_STATUS_CODES:
        return HTTP_STATUS_CODES[status]
    if status >= 500:
        return "unavailable"
    return "unknown"


async def _raise_for_response(response: aiohttp.ClientResponse, operation: str) -> None:
    if response.status < 400:
        return

    rpc_status = None
    message = f"{operation} failed with HTTP {response.status}"
    try:
        body = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            rpc_status = error.get("status")
            message = error.get("message", message)
        elif isinstance(error, str):
            message = error

    raise TransportError(transport_code_for_status(response.status, rpc_status), message)


def _wrap_client_error(error: Exception, operation: str) -> TransportError:
    if isinstance(error, asyncio.TimeoutError):
        return TransportError("deadline-exceeded", f"{operation} timed out")
    if isinstance(error, aiohttp.ClientConnectionError):
        return TransportError("unavailable", f"{operation} connection failed: {error}")
    return TransportError("unknown", f"{operation} failed: {error}")


# =============================================================================
# Firestore value encoding
# =============================================================================

def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat()}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Unsupported Firestore value type: {type(value).__name__}")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore typed value into a Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    logger.debug(f"Unhandled Firestore value: {list(value.keys())}")
    return None


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


# =============================================================================
# Adapters
# =============================================================================

class FirestoreDocumentStore(DocumentStore):
    """
    Durable document store on the Cloud Firestore REST API.

    merge_document uses PATCH with an update mask listing the written
    fields, which creates the document if needed and leaves every other
    field untouched.
    """

    def __init__(
        self,
        project_id: str,
        auth_token: Optional[str] = None,
        timeout: int = 30,
        api_base: str = FIRESTORE_API,
    ):
        self._project_id = project_id
        self._auth_token = auth_token
        self._timeout = timeout
        self._api_base = api_base.rstrip("/")

    def _document_url(self, collection: str, doc_id: str) -> str:
        return (
            f"{self._api_base}/projects/{self._project_id}"
            f"/databases/(default)/documents/{collection}/{doc_id}"
        )

    def _headers(self) -> Dict[str, str]:
        if self._auth_token:
            return {"Authorization": f"Bearer {self._auth_token}"}
        return {}

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        url = self._document_url(collection, doc_id)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    if response.status == 404:
                        return None
                    await _raise_for_response(response, "get_document")
                    data = await response.json()
                    return decode_fields(data.get("fields", {}))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _wrap_client_error(e, "get_document") from e

    async def merge_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        url = self._document_url(collection, doc_id)
        params: List[Tuple[str, str]] = [("updateMask.fieldPaths", key) for key in data]
        try:
            async with aiohttp.ClientSession() as session:
                async with session.patch(
                    url,
                    params=params,
                    json={"fields": encode_fields(data)},
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    await _raise_for_response(response, "merge_document")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _wrap_client_error(e, "merge_document") from e


class RealtimeDatabaseStore(RealtimeStore):
    """Real-time key-path store on the Realtime Database REST API."""

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        timeout: int = 30,
    ):
        self._database_url = database_url.rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self._database_url}/{path.strip('/')}.json"

    def _params(self) -> Dict[str, str]:
        if self._auth_token:
            return {"auth": self._auth_token}
        return {}

    async def get(self, path: str) -> Optional[Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self._url(path),
                    params=self._params(),
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    await _raise_for_response(response, "realtime_get")
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _wrap_client_error(e, "realtime_get") from e

    async def set(self, path: str, value: Any) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.put(
                    self._url(path),
                    params=self._params(),
                    json=value,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as response:
                    await _raise_for_response(response, "realtime_set")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _wrap_client_error(e, "realtime_set") from e
