"""
Tax administration: rate maintenance and exemption certificate review.

Rates and exemptions are written here and read back through
``billing_modules.tax.selectors``.  Every write commits on success and rolls
back on failure; the caller does not manage the transaction.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.domain.billing_types import TaxType
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.workflow import TransitionRecord
from billing_kernel.exceptions import (
    DuplicateExemptionNumberError,
    TaxExemptionNotFoundError,
    TaxRateNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.tax import build_jurisdiction_code
from billing_modules.tax.models import (
    ExemptionStatus,
    ExemptionType,
    Jurisdiction,
    TaxExemption,
    TaxRate,
)
from billing_modules.tax.orm import TaxExemptionModel, TaxRateModel
from billing_modules.tax.selectors import (
    TaxExemptionFilter,
    TaxExemptionSelector,
    TaxRateFilter,
    TaxRateSelector,
)
from billing_modules.tax.workflows import EXEMPTION_WORKFLOW

logger = get_logger("modules.tax.admin")


class TaxAdministrationService:
    """
    Maintains tax rates and exemption certificates.

    Contract:
        Owns the commit/rollback boundary of each write.  Reads go through
        the selectors and return frozen DTOs.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._rates = TaxRateSelector(session)
        self._exemptions = TaxExemptionSelector(session)

    # =========================================================================
    # Rates
    # =========================================================================

    def create_tax_rate(
        self,
        country: str,
        tax_type: TaxType,
        rate: Decimal,
        state: str | None = None,
        threshold: Decimal | None = None,
        effective_date: date | None = None,
        expiration_date: date | None = None,
        description: str | None = None,
        tenant_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> TaxRate:
        jurisdiction = Jurisdiction(country=country, state=state).validated()
        dto = TaxRate(
            id=uuid4(),
            jurisdiction_code=build_jurisdiction_code(jurisdiction.country, jurisdiction.state),
            country=jurisdiction.country,
            state=jurisdiction.state,
            tax_type=tax_type,
            rate=rate,
            threshold=threshold,
            effective_date=effective_date,
            expiration_date=expiration_date,
            description=description,
            tenant_id=tenant_id,
        )
        try:
            self._session.add(TaxRateModel.from_dto(dto, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("tax_rate_created", extra={
            "tax_rate_id": str(dto.id),
            "jurisdiction": dto.jurisdiction_code,
            "rate": str(dto.rate),
            "tax_type": dto.tax_type.value,
        })
        return self._rates.get_rate(dto.id)

    def update_tax_rate(
        self,
        rate_id: UUID,
        rate: Decimal | None = None,
        enabled: bool | None = None,
        threshold: Decimal | None = None,
        expiration_date: date | None = None,
        description: str | None = None,
        actor_id: UUID | None = None,
    ) -> TaxRate:
        """
        Update the mutable fields of a rate.  Unset arguments are left alone.

        Raises:
            TaxRateNotFoundError: Unknown ``rate_id``.
            InvalidAmountError: The new rate or threshold is out of range.
        """
        model = self._session.get(TaxRateModel, rate_id)
        if model is None:
            raise TaxRateNotFoundError(rate_id)

        changes = {
            k: v for k, v in {
                "rate": rate,
                "enabled": enabled,
                "threshold": threshold,
                "expiration_date": expiration_date,
                "description": description,
            }.items()
            if v is not None
        }
        # Validates the new values before anything is written.
        replace(model.to_dto(), **changes)

        try:
            for key, value in changes.items():
                setattr(model, key, value)
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("tax_rate_updated", extra={
            "tax_rate_id": str(rate_id),
            "fields": sorted(changes),
        })
        return model.to_dto()

    def get_tax_rates(self, rate_filter: TaxRateFilter | None = None) -> list[TaxRate]:
        return self._rates.find_rates(rate_filter or TaxRateFilter())

    # =========================================================================
    # Exemptions
    # =========================================================================

    def create_tax_exemption(
        self,
        tenant_id: UUID,
        exemption_type: ExemptionType,
        organization_name: str,
        exemption_number: str,
        country: str,
        issue_date: date,
        customer_id: UUID | None = None,
        state: str | None = None,
        jurisdictions: tuple[str, ...] = (),
        expiration_date: date | None = None,
        actor_id: UUID | None = None,
    ) -> TaxExemption:
        """
        Register a certificate in ``pending`` status.

        Raises:
            DuplicateExemptionNumberError: Number already registered for the tenant.
        """
        jurisdiction = Jurisdiction(country=country, state=state).validated()
        dto = TaxExemption(
            id=uuid4(),
            tenant_id=tenant_id,
            customer_id=customer_id,
            exemption_type=exemption_type,
            status=ExemptionStatus.PENDING,
            organization_name=organization_name,
            exemption_number=exemption_number,
            country=jurisdiction.country,
            state=jurisdiction.state,
            jurisdictions=tuple(j.upper() for j in jurisdictions),
            issue_date=issue_date,
            expiration_date=expiration_date,
        )
        try:
            self._session.add(TaxExemptionModel.from_dto(dto, created_by_id=actor_id))
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise DuplicateExemptionNumberError(tenant_id, exemption_number) from exc
        except Exception:
            self._session.rollback()
            raise

        logger.info("tax_exemption_created", extra={
            "exemption_id": str(dto.id),
            "tenant_id": str(tenant_id),
            "exemption_type": exemption_type.value,
            "tenant_level": dto.is_tenant_level,
        })
        return dto

    def get_tax_exemptions(
        self, exemption_filter: TaxExemptionFilter | None = None,
    ) -> list[TaxExemption]:
        return self._exemptions.find_exemptions(exemption_filter or TaxExemptionFilter())

    def validate_exemption(
        self,
        exemption_id: UUID,
        is_valid: bool,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> tuple[TaxExemption, TransitionRecord]:
        """
        Record the outcome of certificate validation and move the exemption
        to ``approved`` or ``rejected``.

        Raises:
            TaxExemptionNotFoundError: Unknown ``exemption_id``.
            InvalidTransitionError: The exemption is not pending.
        """
        action = "approve" if is_valid else "reject"
        return self._transition(
            exemption_id, action, actor_id,
            validation={
                "validated_at": self._clock.now().isoformat(),
                "is_valid": is_valid,
                "notes": notes,
            },
        )

    def revoke_exemption(
        self, exemption_id: UUID, actor_id: UUID | None = None,
    ) -> tuple[TaxExemption, TransitionRecord]:
        return self._transition(exemption_id, "revoke", actor_id)

    def expire_exemptions(self, as_of: date | None = None) -> list[TransitionRecord]:
        """Move approved exemptions whose expiration date has passed to ``expired``."""
        as_of = as_of or self._clock.now().date()
        candidates = self._exemptions.find_exemptions(TaxExemptionFilter(
            status=ExemptionStatus.APPROVED,
        ))
        records = []
        for exemption in candidates:
            if exemption.expiration_date is not None and exemption.expiration_date < as_of:
                _, record = self._transition(exemption.id, "expire", None)
                records.append(record)
        if records:
            logger.info("tax_exemptions_expired", extra={
                "count": len(records),
                "as_of": as_of,
            })
        return records

    def _transition(
        self,
        exemption_id: UUID,
        action: str,
        actor_id: UUID | None,
        validation: dict | None = None,
    ) -> tuple[TaxExemption, TransitionRecord]:
        model = self._session.get(TaxExemptionModel, exemption_id)
        if model is None:
            raise TaxExemptionNotFoundError(exemption_id)

        transition = EXEMPTION_WORKFLOW.require("tax_exemption", exemption_id, model.status, action)
        from_status = model.status
        try:
            model.status = transition.to_state
            if validation is not None:
                model.validation_data = validation
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        record = TransitionRecord(
            entity_type="tax_exemption",
            entity_id=exemption_id,
            action=action,
            from_status=from_status,
            to_status=transition.to_state,
            occurred_at=self._clock.now(),
        )
        logger.info("tax_exemption_transitioned", extra={
            "exemption_id": str(exemption_id),
            "action": action,
            "from_status": from_status,
            "to_status": transition.to_state,
        })
        return model.to_dto(), record
