# Ledger API Endpoints
#
# To integrate: Add to main server.py with:
# from ledger_routes import create_ledger_routes
# ledger_router = create_ledger_routes(ledger_service, permission_checker)
# app.include_router(ledger_router)

from fastapi import APIRouter, HTTPException, status, Depends, Query
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from models import TransactionCreate, TransactionUpdate
from ledger_service import LedgerService, TransactionListParams, parse_type
from permissions import PermissionChecker
from auth import get_current_user
from core.aggregation import SummaryFilters
from core.errors import LedgerError, ValidationError
from core.link_registry import LinkKind
from core.state_machine import parse_status

logger = logging.getLogger(__name__)


def to_http_exception(error: LedgerError) -> HTTPException:
    """Translate a ledger rejection into the API error envelope."""
    return HTTPException(status_code=error.http_status, detail=error.to_dict())


def _parse_link_kind(value: Optional[str]) -> Optional[LinkKind]:
    if not value:
        return None
    try:
        return LinkKind(value.strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid link kind: {value!r}", field="link_kind")


def create_ledger_routes(
    ledger_service: LedgerService,
    permission_checker: PermissionChecker
) -> APIRouter:
    """Create the ledger API router"""

    router = APIRouter(prefix="/api/transactions", tags=["Ledger"])

    # ============================================
    # CREATE
    # ============================================

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_transaction(
        tx_data: TransactionCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Record a ledger entry; status is derived from its link"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await ledger_service.create_transaction(principal, tx_data.dict())
        except LedgerError as e:
            raise to_http_exception(e)

    @router.post("/order/{order_id}", status_code=status.HTTP_201_CREATED)
    async def create_order_transaction(
        order_id: int,
        tx_data: TransactionCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Record a ledger entry linked to an order"""
        principal = await permission_checker.get_authenticated_user(current_user)
        payload = tx_data.dict()
        payload["order_id"] = order_id
        try:
            return await ledger_service.create_transaction(principal, payload)
        except LedgerError as e:
            raise to_http_exception(e)

    # ============================================
    # LIST / SUMMARY / REPORT
    # ============================================

    @router.get("")
    async def list_transactions(
        type: Optional[str] = None,
        status: Optional[str] = None,
        currency: Optional[str] = None,
        payment_method: Optional[str] = None,
        service_id: Optional[int] = None,
        task_id: Optional[int] = None,
        project_id: Optional[int] = None,
        order_id: Optional[int] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        q: Optional[str] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = Query(default=None),
        offset: Optional[int] = Query(default=None),
        page: Optional[int] = Query(default=None),
        current_user: dict = Depends(get_current_user)
    ):
        """List the caller's visible transactions"""
        principal = await permission_checker.get_authenticated_user(current_user)
        params = TransactionListParams(
            type=type, status=status, currency=currency, payment_method=payment_method,
            service_id=service_id, task_id=task_id, project_id=project_id, order_id=order_id,
            min_amount=min_amount, max_amount=max_amount,
            start_date=start_date, end_date=end_date,
            q=q, sort=sort, limit=limit, offset=offset, page=page
        )
        try:
            return await ledger_service.list_transactions(principal, params)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/order/{order_id}")
    async def list_order_transactions(
        order_id: int,
        limit: Optional[int] = Query(default=None),
        page: Optional[int] = Query(default=None),
        current_user: dict = Depends(get_current_user)
    ):
        """List the caller's visible transactions for one order"""
        principal = await permission_checker.get_authenticated_user(current_user)
        params = TransactionListParams(order_id=order_id, limit=limit, page=page)
        try:
            return await ledger_service.list_transactions(principal, params)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/summary")
    async def get_summary(
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        type: Optional[str] = None,
        status: Optional[str] = None,
        linked: Optional[bool] = None,
        link_kind: Optional[str] = None,
        current_user: dict = Depends(get_current_user)
    ):
        """Totals per type and balance; admins also get the per-role breakdown"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            filters = SummaryFilters(
                start_date=start_date,
                end_date=end_date,
                type=parse_type(type) if type else None,
                status=parse_status(status) if status else None,
                linked=linked,
                link_kind=_parse_link_kind(link_kind)
            )
            return await ledger_service.summarize(principal, filters)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.get("/report")
    async def get_report(
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        current_user: dict = Depends(get_current_user)
    ):
        """Per-type totals over a date window (default: last 30 days)"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await ledger_service.report(principal, start_date, end_date)
        except LedgerError as e:
            raise to_http_exception(e)

    # ============================================
    # SINGLE ENTRY
    # ============================================

    @router.get("/{tx_id}")
    async def get_transaction(
        tx_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await ledger_service.get_transaction(principal, tx_id)
        except LedgerError as e:
            raise to_http_exception(e)

    @router.put("/{tx_id}")
    async def update_transaction(
        tx_id: int,
        tx_data: TransactionUpdate,
        current_user: dict = Depends(get_current_user)
    ):
        """Update allowed fields; status changes are admin only"""
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await ledger_service.update_transaction(
                principal, tx_id, tx_data.dict(exclude_unset=True)
            )
        except LedgerError as e:
            raise to_http_exception(e)

    @router.delete("/{tx_id}")
    async def delete_transaction(
        tx_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        principal = await permission_checker.get_authenticated_user(current_user)
        try:
            return await ledger_service.delete_transaction(principal, tx_id)
        except LedgerError as e:
            raise to_http_exception(e)

    return router
