"""
Engine configuration schema.

``EngineConfig`` is the frozen, validated runtime artifact produced by the
loader from ``defaults/engine.yaml`` (or an override file).  Services
receive it by constructor injection and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass

from stock_kernel.domain.values import QualityStatus


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables of the stock engine.

    Contract:
        Frozen; validated in ``__post_init__``.
    Guarantees:
        - ``outbound_quality_filter`` is CONFORME; pending and non-conforme
          stock never leave by Sortie.
        - ``max_append_attempts >= 1``.
        - ``lot_prefix`` is non-blank and contains no ``|`` (it ends up in
          scan label text).
    """

    outbound_quality_filter: QualityStatus = QualityStatus.CONFORME
    lot_prefix: str = "LOT"
    max_append_attempts: int = 3
    accept_legacy_scan_payload: bool = True
    exclude_quarantine_from_receipts: bool = True
    checksum: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.outbound_quality_filter, QualityStatus):
            raise ValueError(
                f"outbound_quality_filter must be a QualityStatus, "
                f"got {self.outbound_quality_filter!r}"
            )
        if self.outbound_quality_filter is not QualityStatus.CONFORME:
            raise ValueError(
                f"outbound_quality_filter must be 'conforme', "
                f"got {self.outbound_quality_filter.value!r}"
            )
        if not self.lot_prefix or not self.lot_prefix.strip() or "|" in self.lot_prefix:
            raise ValueError(f"Invalid lot_prefix: {self.lot_prefix!r}")
        if (
            isinstance(self.max_append_attempts, bool)
            or not isinstance(self.max_append_attempts, int)
            or self.max_append_attempts < 1
        ):
            raise ValueError(
                f"max_append_attempts must be an integer >= 1, got {self.max_append_attempts!r}"
            )
