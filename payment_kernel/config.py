"""
Reconciliation Configuration (``payment_kernel.config``).

Responsibility
--------------
Holds the handful of tunables the reconciliation core needs: the rounding
tolerance applied to every sum check, the quantisation of stored amounts,
the lock timeout for mutating transactions and two strictness switches.

Construction follows the kernel's configuration dataclass pattern:
``with_defaults()``, ``from_dict()``, plus YAML loading through PyYAML
``safe_load`` (``from_yaml`` / ``load_config``).

Failure modes
-------------
* Invalid value  -> ``ValueError`` from ``__post_init__``.
* Unknown key in a dict or YAML document  -> ``ValueError``.
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Self

import yaml

from payment_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "PAYMENT_KERNEL_CONFIG"


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Configuration of the payment reconciliation core.

    Amounts are MAD with centime precision; the tolerance is one minor unit.
    """

    # Tolerance for declared+non_declared / espece+cheque / cumulative checks
    amount_tolerance: Decimal = Decimal("0.01")

    # Quantisation of stored amounts
    money_decimal_places: int = 2

    # PostgreSQL SET LOCAL lock_timeout for mutating transactions
    lock_timeout_ms: int = 5000

    # Every payment must state declared / non-declared explicitly
    require_declared_split: bool = False

    # A payment with a check leg must carry check sub-objects
    require_check_details: bool = False

    # Beneficiary written on received sale checks when omitted
    default_check_beneficiary: str = "Promoteur"

    # Optional URL for scripts
    database_url: str | None = None

    def __post_init__(self):
        if not isinstance(self.amount_tolerance, Decimal):
            try:
                object.__setattr__(
                    self, "amount_tolerance", Decimal(str(self.amount_tolerance))
                )
            except InvalidOperation as exc:
                raise ValueError(
                    f"amount_tolerance is not a decimal: {self.amount_tolerance!r}"
                ) from exc
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError("money_decimal_places must be between 0 and 9")
        if self.lock_timeout_ms < 0:
            raise ValueError("lock_timeout_ms cannot be negative")
        if not self.default_check_beneficiary:
            raise ValueError("default_check_beneficiary cannot be empty")

    @property
    def quantum(self) -> Decimal:
        """Smallest stored amount step, e.g. Decimal('0.01')."""
        return Decimal(1).scaleb(-self.money_decimal_places)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("reconciliation_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from dictionary. Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown reconciliation config keys: {unknown}")
        logger.info(
            "reconciliation_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load config from a YAML file.

        The document may hold the fields at top level or under a
        ``reconciliation:`` key.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
        if "reconciliation" in data:
            data = data["reconciliation"] or {}
        logger.info("reconciliation_config_loading_from_yaml", extra={"path": str(path)})
        return cls.from_dict(data)


def load_config(path: str | Path | None = None) -> ReconciliationConfig:
    """
    Resolve the active configuration.

    Order: explicit ``path``, then ``$PAYMENT_KERNEL_CONFIG``, then defaults.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or None
    if path is None:
        return ReconciliationConfig.with_defaults()
    return ReconciliationConfig.from_yaml(path)
