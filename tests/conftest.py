"""Pytest configuration and fixtures."""

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.models.product import Product
from src.models.scan_result import ScanSessionResult
from src.services.inventory_service import InventoryService
from src.services.product_cache import ProductCache
from src.utils.config import get_config
from src.utils.logger import get_error_logger, get_inventory_logger, get_scanner_logger, get_store_logger
from src.utils.exceptions import ConcurrentUpdateError, ProductNotFoundError, StoreUnavailableError


@pytest.fixture(autouse=True)
def app_env(monkeypatch, tmp_path):
    """Run every test against a throwaway environment and fresh config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "test-project")
    monkeypatch.setenv("FIRESTORE_API_KEY", "test-key")
    monkeypatch.setenv("FIRESTORE_BASE_URL", "https://firestore.test")
    monkeypatch.delenv("FIRESTORE_AUTH_TOKEN", raising=False)
    monkeypatch.delenv("FIRESTORE_DATABASE", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "testing")
    get_config.cache_clear()
    # Attach handlers before any CliRunner swaps the standard streams
    get_inventory_logger()
    get_scanner_logger()
    get_error_logger()
    get_store_logger()
    yield
    get_config.cache_clear()


class FakeProductStore:
    """In-memory stand-in for ``FirestoreClient`` with update-time tokens."""

    def __init__(self, products=None):
        self.documents = {}
        self._ids = itertools.count(1)
        self._versions = itertools.count(1)
        self.list_calls = 0
        self.update_calls = 0
        self.failure = None
        self.before_update = []
        self.closed = False
        for product in products or []:
            self.insert(product)

    def _next_version(self) -> str:
        return f"v{next(self._versions)}"

    def insert(self, product: Product) -> Product:
        """Seed a document directly, bypassing the service."""
        product_id = product.id or f"doc{next(self._ids)}"
        stored = replace(product, id=product_id, update_time=self._next_version())
        self.documents[product_id] = stored
        return replace(stored)

    def set_quantity(self, product_id: str, quantity: int):
        """Simulate another client writing the document."""
        current = self.documents[product_id]
        self.documents[product_id] = replace(current, quantity=quantity, update_time=self._next_version())

    def _check(self):
        if self.failure is not None:
            raise self.failure

    def list_products(self):
        self._check()
        self.list_calls += 1
        return [replace(p) for p in self.documents.values()]

    def get_product(self, product_id):
        self._check()
        product = self.documents.get(product_id)
        return replace(product) if product else None

    def create_product(self, product):
        self._check()
        return self.insert(product)

    def update_product(self, product_id, values, update_time=None):
        self._check()
        self.update_calls += 1
        if self.before_update:
            self.before_update.pop(0)(self)
        current = self.documents.get(product_id)
        if current is None:
            raise ProductNotFoundError(f"Product with id {product_id} not found")
        if update_time is not None and update_time != current.update_time:
            raise ConcurrentUpdateError(f"Product {product_id} was changed by another writer")
        updated = replace(current, update_time=self._next_version(), **values)
        self.documents[product_id] = updated
        return replace(updated)

    def ping(self):
        self._check()
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def created_at():
    return datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_product(created_at):
    """Create a sample Product for testing."""
    return Product(
        barcode="0001",
        name="Widget",
        quantity=10,
        price=Decimal("2.50"),
        created_at=created_at,
        updated_at=created_at
    )


@pytest.fixture
def sample_products(created_at):
    """Create several products for listing tests."""
    return [
        Product(barcode="0001", name="Widget", quantity=10, created_at=created_at, updated_at=created_at),
        Product(barcode="0002", name="gadget", quantity=3, price=Decimal("9.99")),
        Product(barcode="A1B2", name="Bolt M6", quantity=250, price=Decimal("0.10")),
    ]


@pytest.fixture
def store(sample_products):
    return FakeProductStore(sample_products)


@pytest.fixture
def empty_store():
    return FakeProductStore()


@pytest.fixture
def service(store):
    return InventoryService(store=store, cache=ProductCache())


@pytest.fixture
def make_service():
    """Build a service over a fresh fake store seeded with the given products."""
    def _make(products=None):
        store = FakeProductStore(products)
        return InventoryService(store=store, cache=ProductCache()), store
    return _make


@pytest.fixture
def sample_scan_result():
    """Create a finished ScanSessionResult for testing."""
    result = ScanSessionResult(mode="out")
    result.scanned_count = 5
    result.found_count = 3
    result.missing_count = 1
    result.adjusted_count = 3
    result.ignored_count = 1
    result.finalize()
    return result


@pytest.fixture
def store_down():
    return StoreUnavailableError("Network error while listing products: boom", reason="network")
