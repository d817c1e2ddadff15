"""In-memory cache of product records seen during a session."""

import threading
from typing import Dict, Iterable, List, Optional

from ..models.product import Product, normalize_barcode


class ProductCache:
    """Thread-safe product cache indexed by normalized barcode and by id.

    Entries are advisory copies; the document store stays the source of
    truth and writes always go through it first. ``loaded`` is only set once
    the whole collection has been fetched; single lookups fill it partially.
    """

    def __init__(self):
        self._by_barcode: Dict[str, Product] = {}
        self._barcode_by_id: Dict[str, str] = {}
        self.loaded = False
        self._lock = threading.Lock()

    def get(self, barcode: str) -> Optional[Product]:
        with self._lock:
            return self._by_barcode.get(normalize_barcode(barcode))

    def get_by_id(self, product_id: str) -> Optional[Product]:
        with self._lock:
            barcode = self._barcode_by_id.get(product_id)
            return self._by_barcode.get(barcode) if barcode is not None else None

    def put(self, product: Product):
        """Insert or replace a product, dropping any entry under its old barcode."""
        with self._lock:
            self._put(product)

    def _put(self, product: Product):
        if product.id is not None:
            old_barcode = self._barcode_by_id.get(product.id)
            if old_barcode is not None and old_barcode != product.barcode:
                self._by_barcode.pop(old_barcode, None)
            self._barcode_by_id[product.id] = product.barcode

        displaced = self._by_barcode.get(product.barcode)
        if displaced is not None and displaced.id is not None and displaced.id != product.id:
            self._barcode_by_id.pop(displaced.id, None)

        self._by_barcode[product.barcode] = product

    def remove(self, product_id: str):
        with self._lock:
            barcode = self._barcode_by_id.pop(product_id, None)
            if barcode is not None:
                self._by_barcode.pop(barcode, None)

    def replace_all(self, products: Iterable[Product]):
        """Swap the whole cache for a freshly fetched collection."""
        with self._lock:
            self._by_barcode.clear()
            self._barcode_by_id.clear()
            for product in products:
                self._put(product)
            self.loaded = True

    def all(self) -> List[Product]:
        with self._lock:
            return list(self._by_barcode.values())

    def clear(self):
        with self._lock:
            self._by_barcode.clear()
            self._barcode_by_id.clear()
            self.loaded = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_barcode)

    def __contains__(self, barcode) -> bool:
        with self._lock:
            return normalize_barcode(barcode) in self._by_barcode
