"""Cloud Firestore REST client for the products collection."""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional, Tuple
import httpx

from .base_client import BaseClient
from ..utils.config import get_config
from ..utils.logger import get_store_logger
from ..utils.exceptions import (
    StoreUnavailableError,
    ProductNotFoundError,
    ConcurrentUpdateError,
)
from ..models.product import Product

# Document field names as stored in the collection
FIELD_NAMES = {
    "barcode": "barcode",
    "name": "name",
    "quantity": "quantity",
    "price": "price",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


# ---------------------------------------------------------------------------
# Value codec
# ---------------------------------------------------------------------------

def format_timestamp(value: datetime) -> str:
    """Render a datetime as an RFC 3339 UTC timestamp."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; Firestore may send nanosecond precision."""
    match = _TIMESTAMP_RE.match(text)
    if not match:
        raise ValueError(f"Invalid timestamp: {text!r}")
    frac = (match.group("frac") or "0")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz == "Z":
        tz = "+00:00"
    return datetime.fromisoformat(f"{match.group('base')}.{frac}{tz}").astimezone(timezone.utc)


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, (float, Decimal)):
        return {"doubleValue": float(value)}
    if isinstance(value, datetime):
        return {"timestampValue": format_timestamp(value)}
    return {"stringValue": str(value)}


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore ``Value`` into a Python value."""
    if "nullValue" in value:
        return None
    if "stringValue" in value:
        return value["stringValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return value["doubleValue"]
    if "booleanValue" in value:
        return value["booleanValue"]
    if "timestampValue" in value:
        return parse_timestamp(value["timestampValue"])
    raise ValueError(f"Unsupported Firestore value: {list(value)}")


def encode_fields(values: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Encode model attributes into a Firestore ``fields`` map."""
    return {FIELD_NAMES[key]: encode_value(val) for key, val in values.items()}


def product_to_fields(product: Product) -> Dict[str, Dict[str, Any]]:
    """Encode a product for a create request."""
    values = {
        "barcode": product.barcode,
        "name": product.name,
        "quantity": product.quantity,
        "created_at": product.created_at,
        "updated_at": product.updated_at,
    }
    if product.price is not None:
        values["price"] = product.price
    return encode_fields(values)


def product_from_document(document: Dict[str, Any]) -> Product:
    """
    Build a product from a Firestore document.

    Raises:
        ValueError: If the document is missing a barcode or name, or holds
            a field that cannot be decoded
    """
    try:
        fields = {key: decode_value(val) for key, val in document.get("fields", {}).items()}

        # quantity may come back as integer, double or string
        raw_qty = fields.get("quantity")
        quantity = int(float(raw_qty)) if raw_qty not in (None, "") else 0

        raw_price = fields.get("price")
        price = Decimal(str(raw_price)) if raw_price not in (None, "") else None

        doc_id = document["name"].rsplit("/", 1)[-1]
    except (KeyError, TypeError, AttributeError, OverflowError, InvalidOperation) as e:
        raise ValueError(f"Undecodable document: {e!r}")

    # Never surface negative stock even if a legacy write stored one
    quantity = max(0, quantity)

    return Product(
        id=doc_id,
        barcode=str(fields.get("barcode") or ""),
        name=str(fields.get("name") or ""),
        quantity=quantity,
        price=price,
        created_at=fields.get("createdAt"),
        updated_at=fields.get("updatedAt"),
        update_time=document.get("updateTime"),
    )


def _stored_product(response: httpx.Response, action: str) -> Product:
    """Decode a single-document response, failing with a store error."""
    try:
        return product_from_document(response.json())
    except ValueError as e:
        raise StoreUnavailableError(
            f"Malformed document returned while {action}: {str(e)}",
            reason="malformed-document",
            details={"status_code": response.status_code},
        )


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------

def _error_info(response: httpx.Response) -> Tuple[str, str]:
    """Extract (status, message) from a Firestore error response."""
    try:
        data = response.json()
    except ValueError:
        return "", response.text
    if isinstance(data, list) and data:
        data = data[0]
    error = data.get("error", {}) if isinstance(data, dict) else {}
    return error.get("status", ""), error.get("message", response.text)


def _store_error(response: httpx.Response, action: str) -> StoreUnavailableError:
    """Classify a failed response into a ``StoreUnavailableError``."""
    status, message = _error_info(response)
    details = {"status_code": response.status_code, "status": status, "response": response.text}

    if status == "PERMISSION_DENIED" or response.status_code == 403:
        return StoreUnavailableError(
            f"Permission denied while {action}: {message}. "
            "Check the Firestore security rules for the products collection.",
            reason="permission-denied",
            details=details,
        )
    if status == "UNAUTHENTICATED" or response.status_code == 401:
        return StoreUnavailableError(
            f"Not authenticated while {action}: {message}. Check the API key or token.",
            reason="unauthenticated",
            details=details,
        )
    if status == "UNAVAILABLE" or response.status_code >= 500:
        return StoreUnavailableError(
            f"Firestore unavailable while {action} (HTTP {response.status_code}): {message}",
            reason="unavailable",
            details=details,
        )
    return StoreUnavailableError(
        f"Firestore error while {action} (HTTP {response.status_code}): {message}",
        reason="store-error",
        details=details,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class FirestoreClient(BaseClient):
    """Client for the products collection over the Firestore REST API."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        """Initialize Firestore client from environment configuration."""
        config = get_config()
        env = config.env

        headers = {}
        if env.firestore_auth_token:
            headers["Authorization"] = f"Bearer {env.firestore_auth_token}"

        params = {}
        if env.firestore_api_key:
            params["key"] = env.firestore_api_key

        super().__init__(
            base_url=env.firestore_base_url,
            headers=headers,
            params=params,
            transport=transport,
        )
        self.logger = get_store_logger()
        self.collection = config.store.collection
        self.page_size = config.store.page_size
        self.documents_path = (
            f"/v1/projects/{env.firestore_project_id}"
            f"/databases/{env.firestore_database}/documents"
        )

    @property
    def collection_path(self) -> str:
        return f"{self.documents_path}/{self.collection}"

    def _document_path(self, product_id: str) -> str:
        return f"{self.collection_path}/{product_id}"

    def _send(self, method: str, endpoint: str, action: str, **kwargs) -> httpx.Response:
        """Send a request, turning transport failures into ``StoreUnavailableError``."""
        try:
            return self._make_request_with_retry(method, endpoint, **kwargs)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(
                f"Network error while {action}: {str(e)}",
                reason="network",
                details={"error": str(e)},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_products(self) -> List[Product]:
        """
        Fetch every document in the products collection.

        Firestore pages list results, so this follows ``nextPageToken``
        until the collection is exhausted.

        Returns:
            List of products

        Raises:
            StoreUnavailableError: If the request fails
        """
        self.logger.debug(f"Listing collection '{self.collection}' (paginated)...")

        products: List[Product] = []
        page_token: Optional[str] = None
        page = 0

        while True:
            params: Dict[str, Any] = {"pageSize": self.page_size}
            if page_token:
                params["pageToken"] = page_token

            response = self._send("GET", self.collection_path, "listing products", params=params)
            if response.status_code != 200:
                raise _store_error(response, "listing products")

            data = response.json()
            page += 1

            for document in data.get("documents", []):
                try:
                    products.append(product_from_document(document))
                except ValueError as e:
                    self.logger.warning(f"Skipping malformed document {document.get('name')}: {str(e)}")

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        self.logger.debug(f"Fetched {len(products)} products in {page} page(s)")
        return products

    def get_product(self, product_id: str) -> Optional[Product]:
        """
        Fetch a single product by document id.

        Returns:
            The product, or None when the document does not exist

        Raises:
            StoreUnavailableError: If the request fails for any other reason
        """
        action = f"reading product {product_id}"
        response = self._send("GET", self._document_path(product_id), action)

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise _store_error(response, action)

        return _stored_product(response, action)

    def ping(self) -> bool:
        """Read one page of one document to prove the collection is reachable."""
        response = self._send("GET", self.collection_path, "testing connection", params={"pageSize": 1})
        if response.status_code != 200:
            raise _store_error(response, "testing connection")
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_product(self, product: Product) -> Product:
        """
        Create a new document; Firestore assigns the id.

        Returns:
            The stored product with its id and update token

        Raises:
            StoreUnavailableError: If the request fails
        """
        action = f"creating product {product.barcode}"
        payload = {"fields": product_to_fields(product)}

        response = self._send("POST", self.collection_path, action, json=payload)
        if response.status_code != 200:
            raise _store_error(response, action)

        created = _stored_product(response, action)
        self.logger.info(f"Created document {created.id} for barcode {created.barcode}")
        return created

    def update_product(
        self,
        product_id: str,
        values: Dict[str, Any],
        update_time: Optional[str] = None
    ) -> Product:
        """
        Update some fields of an existing document.

        Only the given fields are written (``updateMask``). When
        *update_time* is given the write only succeeds if the document has
        not changed since that token was read.

        Args:
            product_id: Document id
            values: Model attribute name -> new value
            update_time: Optional ``updateTime`` precondition

        Returns:
            The full updated product as stored

        Raises:
            ProductNotFoundError: If the document does not exist
            ConcurrentUpdateError: If the precondition failed
            StoreUnavailableError: If the request fails
        """
        action = f"updating product {product_id}"

        params: List[Tuple[str, str]] = [
            ("updateMask.fieldPaths", FIELD_NAMES[key]) for key in values
        ]
        if update_time:
            params.append(("currentDocument.updateTime", update_time))
        else:
            params.append(("currentDocument.exists", "true"))

        payload = {"fields": encode_fields(values)}
        response = self._send("PATCH", self._document_path(product_id), action, params=params, json=payload)

        if response.status_code == 200:
            return _stored_product(response, action)

        status, message = _error_info(response)
        if response.status_code == 404 or status == "NOT_FOUND":
            raise ProductNotFoundError(
                f"Product with id {product_id} not found",
                details={"id": product_id},
            )
        if status in ("FAILED_PRECONDITION", "ABORTED") or response.status_code == 409:
            raise ConcurrentUpdateError(
                f"Product {product_id} was changed by another writer",
                details={"id": product_id, "update_time": update_time, "message": message},
            )
        raise _store_error(response, action)
