"""Product lookup and stock update service.

Flow of a stock update:
  1. Re-read the product from the document store (the cache is not trusted).
  2. Compute the new quantity; a decrease below zero is rejected.
  3. Write it with the document's ``updateTime`` as precondition.
  4. If another writer got there first, start again from step 1.
  5. Replace the cache entry with the stored record.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tenacity import retry, stop_after_attempt, retry_if_exception_type

from ..api.firestore_client import FirestoreClient
from ..models.product import (
    Direction,
    InventorySummary,
    Product,
    StockAdjustment,
    coerce_magnitude,
    coerce_quantity,
    normalize_barcode,
    parse_price,
)
from ..utils.config import get_config
from ..utils.exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    InsufficientQuantityError,
    InvalidInputError,
    ProductNotFoundError,
    StoreUnavailableError,
)
from ..utils.logger import get_inventory_logger, get_error_logger
from .product_cache import ProductCache

EDITABLE_FIELDS = ("name", "barcode", "quantity", "price")

SORT_KEYS: Dict[str, Callable[[Product], Any]] = {
    "name": lambda p: p.name.lower(),
    "barcode": lambda p: p.barcode,
    "quantity": lambda p: p.quantity,
    "price": lambda p: p.price,
    "created_at": lambda p: p.created_at,
    "updated_at": lambda p: p.updated_at,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_stock_count(value: Any) -> int:
    """Validate a starting stock count for a new product."""
    if isinstance(value, bool):
        raise InvalidInputError("Quantity must be a whole number", details={"quantity": value})
    if isinstance(value, int):
        if value < 0:
            raise InvalidInputError("Quantity cannot be negative", details={"quantity": value})
        return value
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidInputError(f"Quantity must be a whole number, got {value!r}", details={"quantity": value})
    if number != number or number in (float("inf"), float("-inf")) or not number.is_integer():
        raise InvalidInputError(f"Quantity must be a whole number, got {value!r}", details={"quantity": value})
    if number < 0:
        raise InvalidInputError("Quantity cannot be negative", details={"quantity": value})
    return int(number)


def _parse_price(value: Any):
    try:
        price = parse_price(value)
    except ValueError as e:
        raise InvalidInputError(str(e), details={"price": value})
    if price is not None and price < 0:
        raise InvalidInputError("Price cannot be negative", details={"price": value})
    return price


def filter_products(products: List[Product], search: Optional[str]) -> List[Product]:
    """Keep products whose name contains *search* (any case) or whose barcode does."""
    term = (search or "").strip()
    if not term:
        return list(products)
    name_term = term.lower()
    barcode_term = normalize_barcode(term)
    return [
        p for p in products
        if name_term in p.name.lower() or barcode_term in p.barcode
    ]


def sort_products(products: List[Product], sort_by: str = "name", descending: bool = False) -> List[Product]:
    """Sort products by one column; products with no value for it go last."""
    if sort_by not in SORT_KEYS:
        raise InvalidInputError(
            f"Cannot sort by '{sort_by}'. Choose one of: {', '.join(SORT_KEYS)}",
            details={"sort_by": sort_by},
        )
    key = SORT_KEYS[sort_by]
    present = [p for p in products if key(p) is not None]
    missing = [p for p in products if key(p) is None]
    return sorted(present, key=key, reverse=descending) + missing


class InventoryService:
    """
    Resolve barcodes to products and apply stock changes.

    The service owns its cache and its store client; use it as a context
    manager (or call ``close()``) to release the HTTP connection.
    """

    def __init__(self, store=None, cache: Optional[ProductCache] = None):
        self.config = get_config()
        self.logger = get_inventory_logger()
        self.error_logger = get_error_logger()
        self.store = store if store is not None else FirestoreClient()
        self.cache = cache if cache is not None else ProductCache()
        self.is_busy = False
        self.last_error: Optional[StoreUnavailableError] = None

    @contextmanager
    def _busy(self):
        self.is_busy = True
        try:
            yield
        finally:
            self.is_busy = False

    def _report(self, error: Exception, action: str):
        message = getattr(error, "message", str(error))
        self.error_logger.error(f"{action} failed: {message}")

    def _scan_store(self, barcode: str) -> Optional[Product]:
        """Full collection scan for a normalized barcode."""
        for product in self.store.list_products():
            if product.barcode == barcode:
                return product
        return None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_by_barcode(self, code: str) -> Optional[Product]:
        """
        Resolve a barcode, trying the cache before scanning the store.

        Store failures are logged and kept in ``last_error``; the lookup
        then reports not found.

        Returns:
            The product, or None when nothing matches
        """
        barcode = normalize_barcode(code)
        if not barcode:
            return None

        cached = self.cache.get(barcode)
        if cached is not None:
            self.logger.debug(f"Cache hit for barcode {barcode}")
            return cached

        self.last_error = None
        try:
            with self._busy():
                product = self._scan_store(barcode)
        except StoreUnavailableError as e:
            self.last_error = e
            self._report(e, f"Lookup of barcode {barcode}")
            return None

        if product is None:
            self.logger.info(f"Barcode not found: {barcode}")
            return None

        self.cache.put(product)
        return product

    def get_product(self, product_id: str) -> Product:
        """
        Read one product by document id.

        Raises:
            ProductNotFoundError: If the id does not exist
            StoreUnavailableError: If the store cannot be read
        """
        with self._busy():
            product = self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product with id {product_id} not found", details={"id": product_id})
        self.cache.put(product)
        return product

    def refresh(self) -> List[Product]:
        """Reload the whole collection into the cache."""
        with self._busy():
            products = self.store.list_products()
        self.cache.replace_all(products)
        self.logger.info(f"Cache refreshed with {len(products)} products")
        return products

    def list_products(
        self,
        search: Optional[str] = None,
        sort_by: str = "name",
        descending: bool = False,
        refresh: bool = False
    ) -> List[Product]:
        """Browse the inventory: filter by name/barcode, then sort one column."""
        if sort_by not in SORT_KEYS:
            raise InvalidInputError(
                f"Cannot sort by '{sort_by}'. Choose one of: {', '.join(SORT_KEYS)}",
                details={"sort_by": sort_by},
            )
        products = self.refresh() if refresh or not self.cache.loaded else self.cache.all()
        return sort_products(filter_products(products, search), sort_by, descending)

    @staticmethod
    def summarize(products: List[Product]) -> InventorySummary:
        return InventorySummary.from_products(products)

    # ------------------------------------------------------------------
    # Stock updates
    # ------------------------------------------------------------------

    def adjust_quantity(self, code: str, delta: Any, direction: Any) -> StockAdjustment:
        """
        Load or unload stock for a barcode.

        Args:
            code: Barcode of the product
            delta: Requested magnitude; coerced to an integer >= 1
            direction: ``Direction`` or one of "in"/"out"

        Returns:
            The adjustment, holding the product as stored after the write

        Raises:
            InvalidInputError: If the barcode is empty or the direction unknown
            ProductNotFoundError: If no product has this barcode
            InsufficientQuantityError: If a decrease exceeds the stock
            ConflictError: If concurrent writers kept winning the race
            StoreUnavailableError: If the store cannot be reached
        """
        barcode = normalize_barcode(code)
        if not barcode:
            raise InvalidInputError("Barcode cannot be empty")
        try:
            direction = Direction.parse(direction)
        except ValueError as e:
            raise InvalidInputError(str(e), details={"direction": direction})
        magnitude = coerce_magnitude(delta)

        attempts = max(1, self.config.inventory.max_conflict_retries)

        @retry(
            stop=stop_after_attempt(attempts),
            retry=retry_if_exception_type(ConcurrentUpdateError),
            reraise=True
        )
        def _read_modify_write() -> StockAdjustment:
            current = self._scan_store(barcode)
            if current is None:
                raise ProductNotFoundError(
                    f"Product not found with barcode {barcode}",
                    details={"barcode": barcode},
                )

            if direction is Direction.INCREASE:
                new_quantity = current.quantity + magnitude
            else:
                if magnitude > current.quantity:
                    raise InsufficientQuantityError(
                        f"Cannot unload {magnitude} of {current.name}: only {current.quantity} in stock",
                        details={
                            "barcode": barcode,
                            "quantity": current.quantity,
                            "requested": magnitude,
                        },
                    )
                new_quantity = current.quantity - magnitude

            try:
                stored = self.store.update_product(
                    current.id,
                    {"quantity": new_quantity, "updated_at": _utcnow()},
                    update_time=current.update_time,
                )
            except ConcurrentUpdateError:
                self.logger.warning(f"Concurrent update on {barcode}, re-reading and retrying")
                raise

            return StockAdjustment(
                product=stored,
                previous_quantity=current.quantity,
                delta=magnitude,
                direction=direction,
            )

        try:
            with self._busy():
                adjustment = _read_modify_write()
        except ConcurrentUpdateError as e:
            conflict = ConflictError(
                f"Stock for {barcode} kept changing during the update; try again",
                details={"barcode": barcode, "attempts": attempts, **e.details},
            )
            self._report(conflict, f"Stock update of {barcode}")
            raise conflict
        except (ProductNotFoundError, InsufficientQuantityError, StoreUnavailableError) as e:
            self._report(e, f"Stock update of {barcode}")
            raise

        self.cache.put(adjustment.product)
        self.logger.info(
            f"{'LOAD' if direction is Direction.INCREASE else 'UNLOAD'} {barcode}: "
            f"{adjustment.previous_quantity} -> {adjustment.new_quantity} ({magnitude})"
        )
        return adjustment

    # ------------------------------------------------------------------
    # Product records
    # ------------------------------------------------------------------

    def add_product(self, barcode: str, name: str, quantity: Any = 0, price: Any = None) -> Product:
        """
        Record a new product.

        The barcode must not belong to another product already; the check
        and the create are two separate store calls.

        Raises:
            InvalidInputError: If a field fails validation
            ConflictError: If the barcode is already taken
            StoreUnavailableError: If the store cannot be reached
        """
        now = _utcnow()
        try:
            product = Product(
                barcode=barcode,
                name=name,
                quantity=_parse_stock_count(quantity),
                price=_parse_price(price),
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise InvalidInputError(str(e), details={"barcode": barcode, "name": name})

        try:
            with self._busy():
                existing = self._scan_store(product.barcode)
                if existing is not None:
                    raise ConflictError(
                        f"A product with barcode {product.barcode} already exists ({existing.name})",
                        details={"barcode": product.barcode, "id": existing.id},
                    )
                created = self.store.create_product(product)
        except (ConflictError, StoreUnavailableError) as e:
            self._report(e, f"Adding product {product.barcode}")
            raise

        self.cache.put(created)
        self.logger.info(f"Added product {created.name} ({created.barcode}) with id {created.id}")
        return created

    def edit_product(self, product_id: str, **fields) -> Product:
        """
        Change some fields of an existing product.

        Accepted fields: name, barcode, quantity, price. Quantity is
        floored and clamped at zero; a new barcode must be free.

        Raises:
            InvalidInputError: If a field fails validation or is unknown
            ProductNotFoundError: If the id does not exist
            ConflictError: If the new barcode belongs to another product
            StoreUnavailableError: If the store cannot be reached
        """
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise InvalidInputError(f"Cannot edit field(s): {', '.join(unknown)}", details={"fields": unknown})
        if not fields:
            raise InvalidInputError("No fields to update")

        values: Dict[str, Any] = {}
        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise InvalidInputError("Name cannot be empty")
            values["name"] = name
        if "barcode" in fields:
            new_barcode = normalize_barcode(fields["barcode"])
            if not new_barcode:
                raise InvalidInputError("Barcode cannot be empty")
            values["barcode"] = new_barcode
        if "quantity" in fields:
            try:
                values["quantity"] = coerce_quantity(fields["quantity"])
            except (TypeError, ValueError):
                raise InvalidInputError(
                    f"Quantity must be a number, got {fields['quantity']!r}",
                    details={"quantity": fields["quantity"]},
                )
        if "price" in fields:
            values["price"] = _parse_price(fields["price"])

        try:
            with self._busy():
                current = self.store.get_product(product_id)
                if current is None:
                    raise ProductNotFoundError(
                        f"Product with id {product_id} not found",
                        details={"id": product_id},
                    )

                if "barcode" in values and values["barcode"] != current.barcode:
                    holder = self._scan_store(values["barcode"])
                    if holder is not None and holder.id != product_id:
                        raise ConflictError(
                            f"A product with barcode {values['barcode']} already exists ({holder.name})",
                            details={"barcode": values["barcode"], "id": holder.id},
                        )

                values["updated_at"] = _utcnow()
                updated = self.store.update_product(product_id, values)
        except (ProductNotFoundError, ConflictError, StoreUnavailableError) as e:
            self._report(e, f"Editing product {product_id}")
            raise

        self.cache.put(updated)
        self.logger.info(f"Edited product {product_id}: {', '.join(sorted(fields))}")
        return updated

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self):
        self.cache.clear()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
