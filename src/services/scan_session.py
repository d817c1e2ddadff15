"""Scan sessions: feed decoded barcodes into the inventory service.

The camera and the decoding are owned by an external decoder (for example
``zbarcam --raw``) that prints one decoded barcode per line. A session owns
the decoder for its lifetime, resolves each code once and, in load/unload
mode, applies the configured quantity to the product.
"""

import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol, TextIO

from ..models.product import Direction, Product, StockAdjustment, normalize_barcode
from ..models.scan_result import ScanSessionResult
from ..utils.config import get_config
from ..utils.exceptions import BaseAppException, InvalidInputError
from ..utils.logger import get_scanner_logger, get_error_logger

MODES = ("lookup", "in", "out")


class BarcodeDecoder(Protocol):
    """Source of decoded barcode strings, started and stopped by its owner."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def codes(self) -> Iterator[str]: ...


class StreamDecoder:
    """Decoded barcodes read line by line from a text stream."""

    def __init__(self, stream: TextIO):
        self.stream = stream
        self.running = False

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def codes(self) -> Iterator[str]:
        for line in self.stream:
            if not self.running:
                break
            code = line.strip()
            if code:
                yield code


@dataclass
class ScanEvent:
    """What happened to one decoded code."""

    barcode: str
    status: str  # "found", "missing", "adjusted", "ignored" or "error"
    product: Optional[Product] = None
    adjustment: Optional[StockAdjustment] = None
    error: Optional[BaseAppException] = None


class ScanSession:
    """
    Owned scan session with explicit start/stop.

    Use as a context manager::

        with ScanSession(service, StreamDecoder(sys.stdin), mode="out") as session:
            result = session.run()
    """

    def __init__(
        self,
        service,
        decoder: BarcodeDecoder,
        mode: Optional[str] = None,
        quantity: int = 1,
        cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        config = get_config()
        self.logger = get_scanner_logger()
        self.error_logger = get_error_logger()

        self.mode = (mode or config.scanner.default_mode).lower()
        if self.mode not in MODES:
            raise InvalidInputError(
                f"Unknown scan mode '{self.mode}'. Choose one of: {', '.join(MODES)}",
                details={"mode": self.mode},
            )

        self.service = service
        self.decoder = decoder
        self.quantity = quantity
        self.cooldown = config.scanner.cooldown_seconds if cooldown is None else cooldown
        self._clock = clock
        self._last_code: Optional[str] = None
        self._last_seen: float = 0.0
        self.active = False
        self.result = ScanSessionResult(mode=self.mode)

    def start(self):
        if self.active:
            return
        self.result = ScanSessionResult(mode=self.mode)
        self.decoder.start()
        self.active = True
        self.logger.info(f"Scan session started (mode: {self.mode}, quantity: {self.quantity})")

    def stop(self) -> ScanSessionResult:
        if self.active:
            self.decoder.stop()
            self.active = False
            self.result.finalize()
            self.logger.info(self.result.get_summary())
        return self.result

    def _in_cooldown(self, barcode: str) -> bool:
        now = self._clock()
        if barcode == self._last_code and now - self._last_seen < self.cooldown:
            return True
        self._last_code = barcode
        self._last_seen = now
        return False

    def process(self, code: str) -> ScanEvent:
        """Handle one decoded code."""
        barcode = normalize_barcode(code)
        self.result.scanned_count += 1

        if not barcode or self._in_cooldown(barcode):
            self.result.ignored_count += 1
            return ScanEvent(barcode=barcode, status="ignored")

        product = self.service.find_by_barcode(barcode)
        if product is None:
            error = self.service.last_error
            if error is not None:
                self.result.add_error(barcode, error.kind, error.message, error.details)
                return ScanEvent(barcode=barcode, status="error", error=error)
            self.result.missing_count += 1
            self.logger.info(f"Scanned unknown barcode {barcode}")
            return ScanEvent(barcode=barcode, status="missing")

        self.result.found_count += 1
        if self.mode == "lookup":
            return ScanEvent(barcode=barcode, status="found", product=product)

        direction = Direction.INCREASE if self.mode == "in" else Direction.DECREASE
        try:
            adjustment = self.service.adjust_quantity(barcode, self.quantity, direction)
        except BaseAppException as e:
            self.error_logger.error(f"Scan adjustment of {barcode} failed: {e.message}")
            self.result.add_error(barcode, e.kind, e.message, e.details)
            return ScanEvent(barcode=barcode, status="error", product=product, error=e)

        self.result.adjusted_count += 1
        return ScanEvent(
            barcode=barcode,
            status="adjusted",
            product=adjustment.product,
            adjustment=adjustment,
        )

    def run(self, on_event: Optional[Callable[[ScanEvent], None]] = None) -> ScanSessionResult:
        """Process decoded codes until the decoder is exhausted or stopped."""
        if not self.active:
            self.start()
        for code in self.decoder.codes():
            event = self.process(code)
            if on_event is not None:
                on_event(event)
            if not self.active:
                break
        return self.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
