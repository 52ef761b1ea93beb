"""Onboarding wizard endpoints.

Every endpoint loads the current draft, applies one wizard operation and
returns the resulting view. Gated moves answer 409.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from api.services.container import Services, get_services
from core.models.ttb import DateValue, LegacyBatchInput, OnboardingState, TaxClass, TTBBase
from core.workflow.base import LAST_STEP
from reconciliation.gaps import GapStatus
from workflows.onboarding import OnboardingWizard


router = APIRouter()


class OnboardingView(TTBBase):
    """Wizard state plus the derived values the UI shows."""
    state: OnboardingState
    completed_steps: List[int]
    has_draft: bool
    can_advance_from_step1: bool
    remaining_gap: Decimal
    is_gap_resolved: bool
    gap_status: GapStatus
    gap_tax_classes: List[TaxClass]


class Step1Update(TTBBase):
    """Partial step 1 update; omitted fields are left unchanged."""
    date: DateValue = None
    balances: Optional[Dict[str, Any]] = None
    reconciliation_notes: Optional[str] = None


class Step3Update(TTBBase):
    discrepancy_notes: Optional[str] = None


class ConfirmRequest(TTBBase):
    confirmed: bool = True


def _view(wizard: OnboardingWizard) -> OnboardingView:
    return OnboardingView(
        state=wizard.state,
        completed_steps=sorted(wizard.completed_steps()),
        has_draft=wizard.has_draft(),
        can_advance_from_step1=wizard.can_advance_from_step1(),
        remaining_gap=wizard.remaining_gap(),
        is_gap_resolved=wizard.is_gap_resolved(),
        gap_status=wizard.gap_status(),
        gap_tax_classes=wizard.gap_tax_classes(),
    )


def _validation_detail(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"] for err in e.errors()]


@router.get("", response_model=OnboardingView)
def get_onboarding(services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        return _view(services.wizard())


@router.patch("/step1", response_model=OnboardingView)
def update_step1(request: Step1Update, services: Services = Depends(get_services)) -> OnboardingView:
    """Merge opening balance changes into the draft."""
    changes: Dict[str, Any] = {}
    if "date" in request.model_fields_set:
        changes["as_of_date"] = request.date
    if request.balances is not None:
        changes["balances"] = request.balances
    if request.reconciliation_notes is not None:
        changes["reconciliation_notes"] = request.reconciliation_notes

    with services.wizard_lock:
        wizard = services.wizard()
        try:
            wizard.update_step1(**changes)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=_validation_detail(e))
        return _view(wizard)


@router.post("/prefill", response_model=OnboardingView)
def prefill(services: Services = Depends(get_services)) -> OnboardingView:
    """Copy saved opening balances into an undated draft."""
    with services.wizard_lock:
        wizard = services.wizard()
        wizard.prefill_from_existing()
        return _view(wizard)


@router.post("/next", response_model=OnboardingView)
def go_next(services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        if not wizard.go_next():
            raise HTTPException(
                status_code=409,
                detail=f"Cannot advance from step {wizard.state.current_step}",
            )
        return _view(wizard)


@router.post("/back", response_model=OnboardingView)
def go_back(services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        if not wizard.go_back():
            raise HTTPException(status_code=409, detail="Already on the first step")
        return _view(wizard)


@router.post("/goto/{step}", response_model=OnboardingView)
def go_to_step(step: int, services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        if not wizard.go_to_step(step):
            raise HTTPException(status_code=409, detail=f"Step {step} is not reachable yet")
        return _view(wizard)


@router.post("/calculate", response_model=OnboardingView)
def calculate(services: Services = Depends(get_services)) -> OnboardingView:
    """Run the reconciliation for the draft's date and balances."""
    with services.wizard_lock:
        wizard = services.wizard()
        if wizard.calculate() is None:
            raise HTTPException(status_code=400, detail="Set the opening balance date before calculating")
        return _view(wizard)


@router.post("/legacy-batches", response_model=OnboardingView, status_code=201)
def add_legacy_batch(batch: LegacyBatchInput, services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        errors = wizard.add_legacy_batch(batch)
        if errors:
            raise HTTPException(status_code=422, detail=errors)
        return _view(wizard)


@router.delete("/legacy-batches/{index}", response_model=OnboardingView)
def remove_legacy_batch(index: int, services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        try:
            wizard.remove_legacy_batch(index)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return _view(wizard)


@router.patch("/step3", response_model=OnboardingView)
def update_step3(request: Step3Update, services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        wizard.update_step3(discrepancy_notes=request.discrepancy_notes)
        return _view(wizard)


@router.post("/confirm", response_model=OnboardingView)
def confirm(request: ConfirmRequest, services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        wizard.set_confirmed(request.confirmed)
        return _view(wizard)


@router.post("/commit")
def commit(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Commit the confirmed draft.

    409 when the draft is not on the review step or not confirmed,
    502 with the failing stage's error when a stage fails.
    """
    with services.wizard_lock:
        wizard = services.wizard()
        if wizard.state.current_step != LAST_STEP or not wizard.state.step4.confirmed:
            raise HTTPException(status_code=409, detail="Confirm the reconciliation on the review step before committing")

        result = wizard.commit()
        if not result.success:
            if result.failed_stage is None and not result.completed_stages and result.workflow_id is None:
                raise HTTPException(status_code=409, detail=result.error_message)
            raise HTTPException(
                status_code=502,
                detail={
                    "message": result.error_message,
                    "failed_stage": result.failed_stage.value if result.failed_stage else None,
                    "completed_stages": [s.value for s in result.completed_stages],
                    "commit_id": result.commit_id,
                },
            )
        return result.to_dict()


@router.post("/reset", response_model=OnboardingView)
def reset(services: Services = Depends(get_services)) -> OnboardingView:
    with services.wizard_lock:
        wizard = services.wizard()
        wizard.reset()
        return _view(wizard)
