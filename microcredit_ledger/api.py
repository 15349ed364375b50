"""
FastAPI REST API Module

Thin HTTP adapter over the ledger engine: loan issuance and reads, payment
recording, penalty statements, the client notification inbox, batch triggers
and the portfolio risk report.
Amounts travel as decimal strings. Runs on port 8090 by default.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .audit import AuditEventType
from .exceptions import LedgerError, NotFoundError, ConflictError, ValidationError
from .loans import loan_to_dict
from .models import LoanStatus
from .notifications import Notification
from .payments import payment_to_dict
from .system import LedgerSystem


# Pydantic models for API requests
class IssueLoanRequest(BaseModel):
    client_id: str = Field(..., min_length=1)
    principal: str = Field(..., description="Decimal amount as string")
    due_at: datetime
    issued_at: Optional[datetime] = None


class RecordPaymentRequest(BaseModel):
    loan_id: str = Field(..., min_length=1)
    amount: str = Field(..., description="Decimal amount as string")
    method: str = Field(..., description="cash, bank_transfer, m_pesa, e_mola, mkesh, pledge or other")
    reference: Optional[str] = None
    client_id: Optional[str] = None


class PenaltyNoteRequest(BaseModel):
    note: str


def http_error(error: LedgerError) -> HTTPException:
    """Map a ledger error to its HTTP status"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "client_id": notification.client_id,
        "type": notification.kind.value,
        "message": notification.message,
        "status": notification.status.value,
        "created_at": notification.created_at.isoformat()
    }


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create the API around a ledger system (built from config when omitted)"""
    app = FastAPI(
        title="Microcredit Ledger API",
        description="Payment allocation, penalty accrual and portfolio risk for microcredit loans",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system or LedgerSystem()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check(system: LedgerSystem = Depends(get_ledger_system)):
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": system.clock.now().isoformat()
        }

    # Loan endpoints
    @app.post("/loans", status_code=status.HTTP_201_CREATED)
    async def issue_loan(request: IssueLoanRequest,
                         system: LedgerSystem = Depends(get_ledger_system)):
        """Issue a new loan"""
        try:
            loan = system.loan_register.issue_loan(
                client_id=request.client_id,
                principal=request.principal,
                due_at=request.due_at,
                issued_at=request.issued_at
            )
        except LedgerError as e:
            raise http_error(e)
        return loan_to_dict(loan)

    @app.get("/loans")
    async def list_loans(status_filter: Optional[str] = Query(None, alias="status"),
                         system: LedgerSystem = Depends(get_ledger_system)):
        """List loans, optionally by status"""
        loan_status = None
        if status_filter:
            try:
                loan_status = LoanStatus(status_filter.lower())
            except ValueError:
                raise HTTPException(status_code=422, detail=f"Unknown loan status: {status_filter}")
        loans = system.loan_register.list_loans(loan_status)
        return {"loans": [loan_to_dict(loan) for loan in loans]}

    @app.get("/loans/{loan_id}")
    async def get_loan(loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        """Get loan details"""
        try:
            return loan_to_dict(system.loan_register.get_loan(loan_id))
        except LedgerError as e:
            raise http_error(e)

    @app.delete("/loans/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_loan(loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        """Delete a loan without payments or penalties"""
        try:
            system.loan_register.delete_loan(loan_id)
        except LedgerError as e:
            raise http_error(e)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/clients/{client_id}/loans")
    async def get_client_loans(client_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        loans = system.loan_register.get_client_loans(client_id)
        return {"client_id": client_id, "loans": [loan_to_dict(loan) for loan in loans]}

    # Payment endpoints
    @app.post("/payments", status_code=status.HTTP_201_CREATED)
    async def record_payment(request: RecordPaymentRequest,
                             system: LedgerSystem = Depends(get_ledger_system)):
        """Record a payment and return its allocation"""
        try:
            receipt = system.payment_engine.record_payment(
                loan_id=request.loan_id,
                amount=request.amount,
                method=request.method,
                reference=request.reference,
                client_id=request.client_id
            )
        except LedgerError as e:
            raise http_error(e)
        return receipt.to_dict()

    @app.get("/payments/{payment_id}")
    async def get_payment(payment_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        try:
            return payment_to_dict(system.payment_engine.get_payment(payment_id))
        except LedgerError as e:
            raise http_error(e)

    @app.get("/loans/{loan_id}/payments")
    async def get_loan_payments(loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        try:
            payments = system.payment_engine.get_loan_payments(loan_id)
        except LedgerError as e:
            raise http_error(e)
        return {"loan_id": loan_id, "payments": [payment_to_dict(p) for p in payments]}

    @app.get("/clients/{client_id}/payments")
    async def get_client_payments(client_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        payments = system.payment_engine.get_client_payments(client_id)
        return {"client_id": client_id, "payments": [payment_to_dict(p) for p in payments]}

    # Penalty endpoints
    @app.get("/loans/{loan_id}/penalties")
    async def get_loan_penalties(loan_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        try:
            return system.penalty_book.get_loan_penalties(loan_id).to_dict()
        except LedgerError as e:
            raise http_error(e)

    @app.get("/clients/{client_id}/penalties")
    async def get_client_penalties(client_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        return system.penalty_book.get_client_penalties(client_id).to_dict()

    @app.post("/penalties/{penalty_id}/notes")
    async def add_penalty_note(penalty_id: str, request: PenaltyNoteRequest,
                               system: LedgerSystem = Depends(get_ledger_system)):
        try:
            penalty = system.penalty_book.append_note(penalty_id, request.note)
        except LedgerError as e:
            raise http_error(e)
        return {"id": penalty.id, "notes": penalty.notes}

    # Client notifications
    @app.get("/clients/{client_id}/notifications")
    async def get_client_notifications(client_id: str,
                                       system: LedgerSystem = Depends(get_ledger_system)):
        notifications = system.notification_inbox.list_notifications(client_id)
        return {"client_id": client_id,
                "notifications": [notification_to_dict(n) for n in reversed(notifications)]}

    @app.patch("/notifications/{notification_id}/read")
    async def mark_notification_read(notification_id: str,
                                     system: LedgerSystem = Depends(get_ledger_system)):
        """Mark a queued client notification as read"""
        try:
            notification = system.notification_inbox.mark_read(notification_id)
        except LedgerError as e:
            raise http_error(e)
        return notification_to_dict(notification)

    # Batch triggers
    @app.post("/tasks/run-penalties")
    async def run_penalties(system: LedgerSystem = Depends(get_ledger_system)):
        """Run the daily penalty accrual now"""
        return system.accrual_engine.run_daily_accrual().to_dict()

    @app.post("/tasks/run-reminders")
    async def run_reminders(system: LedgerSystem = Depends(get_ledger_system)):
        """Run the payment reminder pass now"""
        return system.accrual_engine.run_payment_reminders().to_dict()

    # Reporting
    @app.get("/reports/risk")
    async def risk_report(system: LedgerSystem = Depends(get_ledger_system)):
        return system.risk_classifier.classify_portfolio().to_dict()

    @app.get("/audit/verify")
    async def verify_audit(system: LedgerSystem = Depends(get_ledger_system)):
        """Verify the audit hash chain and record the check"""
        result = system.audit_trail.verify_integrity()
        system.audit_trail.log_event(
            AuditEventType.AUDIT_INTEGRITY_CHECK, "audit", "audit_events",
            {"valid": result["valid"], "total_events": result["total_events"]}
        )
        return result

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "microcredit_ledger.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
