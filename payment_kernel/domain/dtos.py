"""
DTOs -- Pure domain data transfer objects and status vocabularies.

Responsibility:
    Defines the immutable structures that cross the service boundary: the
    status enums shared by models and domain code, payment inputs (amount,
    method, split, check sub-objects), and the read-side records returned to
    the API layer (installments, checks, parents, statements, reports).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked by services and selectors only; callers never
    receive ORM rows.

Invariants enforced:
    - Every monetary field is a ``Decimal``.
    - Installment and check records are frozen; editing goes through the
      command facade.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ParentKind(str, Enum):
    """Owner of an installment schedule."""

    SALE = "sale"
    EXPENSE = "expense"


class InstallmentStatus(str, Enum):
    """
    Status of one installment (échéance).

    en_attente / en_retard -> paye via a recorded payment; any status -> annule.
    Only ``annule`` rows are excluded from the parent aggregate.
    """

    EN_ATTENTE = "en_attente"
    PAYE = "paye"
    EN_RETARD = "en_retard"
    ANNULE = "annule"


class PaymentStatus(str, Enum):
    """Derived settlement status of a sale or expense."""

    NON_PAYE = "non_paye"
    PARTIELLEMENT_PAYE = "partiellement_paye"
    PAYE = "paye"


class SaleStatus(str, Enum):
    EN_COURS = "en_cours"
    TERMINE = "termine"
    ANNULE = "annule"


class CheckStatus(str, Enum):
    """
    Check lifecycle: emis -> encaisse | annule.

    Both targets are terminal.
    """

    EMIS = "emis"
    ENCAISSE = "encaisse"
    ANNULE = "annule"


class CheckType(str, Enum):
    """Received from a buyer (sale) or given to a supplier (expense)."""

    RECU = "recu"
    DONNE = "donne"


class PropertyType(str, Enum):
    """Unit category; each maps to one capacity column of the project."""

    APPARTEMENT = "appartement"
    GARAGE = "garage"
    LOT = "lot"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentMethodSpec:
    """
    Leg definition of one payment-method label.

    ``virement`` has a cash leg only: bank transfers are booked on the
    espece side so that espece + cheque == paye holds for every row.
    """

    code: str
    has_cash_leg: bool
    has_check_leg: bool
    label: str | None = None

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("Payment method code cannot be empty")
        if not (self.has_cash_leg or self.has_check_leg):
            raise ValueError(f"Payment method '{self.code}' must have at least one leg")

    @property
    def is_mixed(self) -> bool:
        return self.has_cash_leg and self.has_check_leg

    @classmethod
    def from_model(cls, model) -> PaymentMethodSpec:
        return cls(
            code=model.code,
            has_cash_leg=model.has_cash_leg,
            has_check_leg=model.has_check_leg,
            label=model.label,
        )


@dataclass(frozen=True)
class SplitInput:
    """
    Explicit sub-amounts supplied by the caller.

    Any field may be omitted; the money split derives or rejects the
    missing ones depending on the payment method.
    """

    montant_declare: Decimal | None = None
    montant_non_declare: Decimal | None = None
    montant_espece: Decimal | None = None
    montant_cheque: Decimal | None = None

    @property
    def has_declared_pair(self) -> bool:
        return self.montant_declare is not None or self.montant_non_declare is not None

    @property
    def has_leg_pair(self) -> bool:
        return self.montant_espece is not None or self.montant_cheque is not None


@dataclass(frozen=True)
class SplitResult:
    """Validated breakdown of one payment; both pairs sum to ``amount``."""

    amount: Decimal
    method: str
    montant_declare: Decimal
    montant_non_declare: Decimal
    montant_espece: Decimal
    montant_cheque: Decimal


@dataclass(frozen=True)
class CheckInput:
    """
    Check sub-object attached to a payment.

    ``date_encaissement`` on input is the expected clearing date; the
    actual date is written by the clear transition.
    """

    numero_cheque: str
    montant: Decimal
    date_emission: date
    nom_emetteur: str | None = None
    nom_beneficiaire: str | None = None
    date_encaissement: date | None = None
    facture_recue: bool = False
    description: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    """One payment as received from the API layer."""

    amount: Decimal
    method: str
    payment_date: date | None = None
    splits: SplitInput = field(default_factory=SplitInput)
    description: str | None = None
    checks: tuple[CheckInput, ...] = ()


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContributionRow:
    """
    What one installment brings to its parent aggregate.

    ``bounced_check_total`` is the amount of cancelled checks still linked
    to the installment; it is subtracted from the paid amount.
    """

    statut: str
    montant_paye: Decimal
    bounced_check_total: Decimal = Decimal("0")


@dataclass(frozen=True)
class ParentAggregate:
    """Derived totals stored on a sale or expense."""

    contractual_total: Decimal
    total_paid: Decimal
    remaining: Decimal
    status: PaymentStatus


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallmentInfo:
    id: UUID
    parent_type: ParentKind
    parent_id: UUID
    numero_echeance: int
    montant_prevu: Decimal
    date_prevue: date | None
    montant_paye: Decimal
    montant_declare: Decimal
    montant_non_declare: Decimal
    montant_espece: Decimal
    montant_cheque: Decimal
    mode_paiement: str | None
    date_paiement: date | None
    description: str | None
    statut: InstallmentStatus
    is_initial_advance: bool = False

    @classmethod
    def from_model(cls, model, parent_type: ParentKind, parent_id: UUID) -> InstallmentInfo:
        return cls(
            id=model.id,
            parent_type=parent_type,
            parent_id=parent_id,
            numero_echeance=model.numero_echeance,
            montant_prevu=model.montant_prevu,
            date_prevue=model.date_prevue,
            montant_paye=model.montant_paye,
            montant_declare=model.montant_declare,
            montant_non_declare=model.montant_non_declare,
            montant_espece=model.montant_espece,
            montant_cheque=model.montant_cheque,
            mode_paiement=model.mode_paiement,
            date_paiement=model.date_paiement,
            description=model.description,
            statut=InstallmentStatus(model.statut),
            is_initial_advance=bool(getattr(model, "is_initial_advance", False)),
        )


@dataclass(frozen=True)
class CheckInfo:
    id: UUID
    type_cheque: CheckType
    numero_cheque: str
    montant: Decimal
    statut: CheckStatus
    date_emission: date
    date_encaissement: date | None
    nom_emetteur: str | None
    nom_beneficiaire: str | None
    facture_recue: bool
    description: str | None
    project_id: UUID | None
    sale_id: UUID | None
    expense_id: UUID | None
    payment_plan_id: UUID | None
    expense_payment_plan_id: UUID | None
    link_stale: bool

    @classmethod
    def from_model(cls, model) -> CheckInfo:
        return cls(
            id=model.id,
            type_cheque=CheckType(model.type_cheque),
            numero_cheque=model.numero_cheque,
            montant=model.montant,
            statut=CheckStatus(model.statut),
            date_emission=model.date_emission,
            date_encaissement=model.date_encaissement,
            nom_emetteur=model.nom_emetteur,
            nom_beneficiaire=model.nom_beneficiaire,
            facture_recue=model.facture_recue,
            description=model.description,
            project_id=model.project_id,
            sale_id=model.sale_id,
            expense_id=model.expense_id,
            payment_plan_id=model.payment_plan_id,
            expense_payment_plan_id=model.expense_payment_plan_id,
            link_stale=model.link_stale,
        )


@dataclass(frozen=True)
class ProjectInfo:
    id: UUID
    nom: str
    localisation: str | None
    societe: str | None
    surface_totale: Decimal | None
    nombre_lots: int
    nombre_appartements: int
    nombre_garages: int
    description: str | None

    @classmethod
    def from_model(cls, model) -> ProjectInfo:
        return cls(
            id=model.id,
            nom=model.nom,
            localisation=model.localisation,
            societe=model.societe,
            surface_totale=model.surface_totale,
            nombre_lots=model.nombre_lots,
            nombre_appartements=model.nombre_appartements,
            nombre_garages=model.nombre_garages,
            description=model.description,
        )


@dataclass(frozen=True)
class SaleInfo:
    id: UUID
    project_id: UUID
    type_propriete: PropertyType
    unite_numero: str
    client_nom: str
    prix_total: Decimal
    avance_declare: Decimal
    avance_non_declare: Decimal
    avance_espece: Decimal
    avance_cheque: Decimal
    statut: SaleStatus
    aggregate: ParentAggregate
    mode_paiement: str | None = None
    description: str | None = None

    @classmethod
    def from_model(cls, model) -> SaleInfo:
        return cls(
            id=model.id,
            project_id=model.project_id,
            type_propriete=PropertyType(model.type_propriete),
            unite_numero=model.unite_numero,
            client_nom=model.client_nom,
            prix_total=model.prix_total,
            avance_declare=model.avance_declare,
            avance_non_declare=model.avance_non_declare,
            avance_espece=model.avance_espece,
            avance_cheque=model.avance_cheque,
            statut=SaleStatus(model.statut),
            aggregate=ParentAggregate(
                contractual_total=model.prix_total,
                total_paid=model.montant_total_paye,
                remaining=model.montant_restant,
                status=PaymentStatus(model.statut_paiement),
            ),
            mode_paiement=model.mode_paiement,
            description=model.description,
        )


@dataclass(frozen=True)
class ExpenseInfo:
    id: UUID
    project_id: UUID
    nom: str
    montant_total: Decimal
    montant_declare: Decimal | None
    montant_non_declare: Decimal | None
    aggregate: ParentAggregate
    mode_paiement: str | None = None
    description: str | None = None

    @classmethod
    def from_model(cls, model) -> ExpenseInfo:
        return cls(
            id=model.id,
            project_id=model.project_id,
            nom=model.nom,
            montant_total=model.montant_total,
            montant_declare=model.montant_declare,
            montant_non_declare=model.montant_non_declare,
            aggregate=ParentAggregate(
                contractual_total=model.montant_total,
                total_paid=model.montant_total_paye,
                remaining=model.montant_restant,
                status=PaymentStatus(model.statut_paiement),
            ),
            mode_paiement=model.mode_paiement,
            description=model.description,
        )


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a payment command: the row, the new aggregate, new checks."""

    installment: InstallmentInfo
    aggregate: ParentAggregate
    checks: tuple[CheckInfo, ...] = ()


@dataclass(frozen=True)
class ParentStatement:
    """A sale or expense with its installments (by numero_echeance) and checks."""

    parent: SaleInfo | ExpenseInfo
    installments: tuple[InstallmentInfo, ...]
    checks: tuple[CheckInfo, ...]


@dataclass(frozen=True)
class DriftReport:
    """Stored aggregate vs. aggregate recomputed from committed rows."""

    parent_type: ParentKind
    parent_id: UUID
    stored: ParentAggregate
    recomputed: ParentAggregate
    row_violations: tuple[str, ...] = ()

    @property
    def has_drift(self) -> bool:
        return self.stored != self.recomputed

    @property
    def is_consistent(self) -> bool:
        return not self.has_drift and not self.row_violations


@dataclass(frozen=True)
class PaymentStats:
    count_by_status: dict[str, int]
    total_planned: Decimal
    total_paid: Decimal
    total_espece: Decimal
    total_cheque: Decimal
    total_declare: Decimal
    total_non_declare: Decimal


@dataclass(frozen=True)
class CheckStats:
    count_by_status: dict[str, int]
    amount_by_status: dict[str, Decimal]
    count_by_type: dict[str, int]
    amount_by_type: dict[str, Decimal]
    total_count: int
    total_amount: Decimal
