# carmarket/support.py
"""
Support tickets and their message threads.

Status workflow: open -> in_progress | waiting_customer -> resolved | closed.
Only two transitions happen on their own, when a message is posted:

* the ticket owner writes on a ``waiting_customer`` ticket -> ``open``
* an admin writes a public reply on an ``open`` ticket -> ``waiting_customer``

Everything else is a free-form admin write through PATCH.
"""
import logging
import math
from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import Principal, require_principal
from .database import get_db
from .models import (
    Booking, SupportMessage, SupportTicket, User,
    TICKET_CATEGORIES, TICKET_PRIORITIES, TICKET_STATUSES,
)
from .notifications import send_support_ticket_alert
from .utils import as_list, as_text, iso, make_reference, to_int

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/support/tickets", tags=["support"])

CLOSING_STATUSES = ("resolved", "closed")


# ===== Helpers =====
def _user_brief(u: User):
    if not u:
        return None
    return {"id": u.id, "email": u.email, "fullName": u.full_name, "role": u.role}


def _visible_messages(db: Session, ticket_id: int, principal: Principal):
    q = db.query(SupportMessage).filter(SupportMessage.ticket_id == ticket_id)
    if not principal.is_admin:
        q = q.filter(SupportMessage.is_internal.is_(False))
    return q.order_by(SupportMessage.created_at, SupportMessage.id)


def ticket_to_dict(t: SupportTicket, principal: Principal, **extra) -> dict:
    data = {
        "id": t.id,
        "ticketNumber": t.ticket_number,
        "userId": t.user_id,
        "category": t.category,
        "priority": t.priority,
        "subject": t.subject,
        "description": t.description,
        "status": t.status,
        "attachments": t.attachments or [],
        "customerSatisfaction": t.customer_satisfaction,
        "resolvedAt": iso(t.resolved_at),
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
        "user": _user_brief(t.user),
        "assignedTo": _user_brief(t.assigned_to),
        "relatedBooking": {
            "id": t.related_booking.id,
            "bookingReference": t.related_booking.booking_reference,
        } if t.related_booking else None,
    }
    if principal.is_admin:
        data["internalNotes"] = t.internal_notes
    data.update(extra)
    return data


def _load_ticket(db: Session, ticket_id: int, principal: Principal) -> SupportTicket:
    """Ticket visible to the caller: its owner or any admin."""
    t = db.get(SupportTicket, ticket_id)
    if not t:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if not principal.is_admin and t.user_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return t


def apply_message_transition(t: SupportTicket, author_id: int, author_is_admin: bool, is_internal: bool) -> None:
    # Both rules look at the status before the message
    if t.status == "waiting_customer" and author_id == t.user_id and not is_internal:
        t.status = "open"
    elif t.status == "open" and author_is_admin and not is_internal:
        t.status = "waiting_customer"


# ========== Tickets ==========
@router.get("")
def list_tickets(
    status: str = Query(None),
    category: str = Query(None),
    page: str = Query("1"),
    limit: str = Query("10"),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    page_n = max(1, to_int(page, 1) or 1)
    per_page = max(1, min(100, to_int(limit, 10) or 10))

    q = db.query(SupportTicket)
    if not principal.is_admin:
        q = q.filter(SupportTicket.user_id == principal.user_id)
    if status and status != "all":
        q = q.filter(SupportTicket.status == status)
    if category and category != "all":
        q = q.filter(SupportTicket.category == category)

    total = q.count()
    tickets = (
        q.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .offset((page_n - 1) * per_page)
        .limit(per_page)
        .all()
    )

    counts = {}
    if tickets:
        counts_q = (
            db.query(SupportMessage.ticket_id, func.count(SupportMessage.id))
            .filter(SupportMessage.ticket_id.in_([t.id for t in tickets]))
        )
        if not principal.is_admin:
            counts_q = counts_q.filter(SupportMessage.is_internal.is_(False))
        counts = dict(counts_q.group_by(SupportMessage.ticket_id).all())

    rows = []
    for t in tickets:
        last = (
            _visible_messages(db, t.id, principal)
            .order_by(None)
            .order_by(SupportMessage.created_at.desc(), SupportMessage.id.desc())
            .first()
        )
        rows.append(ticket_to_dict(
            t, principal,
            lastMessage=last.to_dict() if last else None,
            messageCount=int(counts.get(t.id, 0)),
        ))

    return {
        "success": True,
        "tickets": rows,
        "pagination": {
            "page": page_n,
            "limit": per_page,
            "total": total,
            "pages": math.ceil(total / per_page),
        },
    }


@router.post("", status_code=201)
def create_ticket(
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    category = payload.get("category")
    priority = payload.get("priority") or "medium"
    subject = as_text(payload.get("subject"), "subject")
    description = as_text(payload.get("description"), "description")
    attachments = as_list(payload.get("attachments"), "attachments")

    if not category or not subject or not description:
        raise HTTPException(status_code=400, detail="Missing required fields: category, subject, description")
    if category not in TICKET_CATEGORIES:
        raise HTTPException(status_code=400, detail="Invalid category")
    if priority not in TICKET_PRIORITIES:
        raise HTTPException(status_code=400, detail="Invalid priority")

    related_id = None
    if payload.get("relatedBookingId"):
        related = db.get(Booking, to_int(payload.get("relatedBookingId"), 0))
        if not related:
            raise HTTPException(status_code=400, detail="Related booking not found")
        if not principal.is_admin and related.customer_id != principal.user_id:
            raise HTTPException(status_code=403, detail="Unauthorized to reference this booking")
        related_id = related.id

    ticket = SupportTicket(
        ticket_number=make_reference("VEN", 6),
        user_id=principal.user_id,
        category=category,
        priority=priority,
        subject=subject,
        description=description,
        status="open",
        attachments=attachments,
        related_booking_id=related_id,
    )
    db.add(ticket)
    db.flush()
    # The description opens the thread
    db.add(SupportMessage(
        ticket_id=ticket.id,
        user_id=principal.user_id,
        message=description,
        attachments=attachments,
        is_internal=False,
    ))
    db.commit()
    db.refresh(ticket)
    logger.info("support ticket %s opened by user id=%s", ticket.ticket_number, principal.user_id)

    send_support_ticket_alert(ticket)
    return {"success": True, "ticket": ticket_to_dict(ticket, principal)}


@router.get("/{ticket_id}")
def get_ticket(ticket_id: int, principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    t = _load_ticket(db, ticket_id, principal)
    messages = [m.to_dict() for m in _visible_messages(db, t.id, principal).all()]
    return {"success": True, "ticket": ticket_to_dict(t, principal, messages=messages)}


@router.patch("/{ticket_id}")
def update_ticket(
    ticket_id: int,
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    t = _load_ticket(db, ticket_id, principal)
    changed = False

    if principal.is_admin:
        if "status" in payload:
            status = payload.get("status")
            if status not in TICKET_STATUSES:
                raise HTTPException(status_code=400, detail="Invalid status")
            t.status = status
            if status in CLOSING_STATUSES and not t.resolved_at:
                t.resolved_at = datetime.utcnow()
            elif status not in CLOSING_STATUSES:
                t.resolved_at = None
            changed = True
        if "priority" in payload:
            if payload.get("priority") not in TICKET_PRIORITIES:
                raise HTTPException(status_code=400, detail="Invalid priority")
            t.priority = payload["priority"]
            changed = True
        if "assignedToUserId" in payload:
            assignee_id = to_int(payload.get("assignedToUserId"))
            if assignee_id:
                assignee = db.get(User, assignee_id)
                if not assignee or assignee.role != "admin":
                    raise HTTPException(status_code=400, detail="Can only assign tickets to admin users")
            t.assigned_to_id = assignee_id or None
            changed = True
        if "internalNotes" in payload:
            t.internal_notes = as_text(payload.get("internalNotes"), "internalNotes") or None
            changed = True

    if t.user_id == principal.user_id and "customerSatisfaction" in payload:
        score = to_int(payload.get("customerSatisfaction"))
        if score is None or not 1 <= score <= 5:
            raise HTTPException(status_code=400, detail="customerSatisfaction must be between 1 and 5")
        t.customer_satisfaction = score
        changed = True

    if not changed:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    t.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(t)
    return {"success": True, "ticket": ticket_to_dict(t, principal)}


@router.delete("/{ticket_id}")
def delete_ticket(ticket_id: int, principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can delete tickets")
    t = db.get(SupportTicket, ticket_id)
    if not t:
        raise HTTPException(status_code=404, detail="Ticket not found")
    db.delete(t)
    db.commit()
    logger.info("support ticket %s deleted by admin id=%s", t.ticket_number, principal.user_id)
    return {"success": True, "message": "Ticket deleted successfully"}


# ========== Messages ==========
@router.get("/{ticket_id}/messages")
def list_messages(ticket_id: int, principal: Principal = Depends(require_principal), db: Session = Depends(get_db)):
    t = _load_ticket(db, ticket_id, principal)
    return {
        "success": True,
        "messages": [m.to_dict() for m in _visible_messages(db, t.id, principal).all()],
    }


@router.post("/{ticket_id}/messages", status_code=201)
def post_message(
    ticket_id: int,
    payload: dict = Body(default=None),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
):
    payload = payload or {}
    text = as_text(payload.get("message"), "message")
    if not text:
        raise HTTPException(status_code=400, detail="Message is required")

    t = _load_ticket(db, ticket_id, principal)
    if t.status == "closed" and not principal.is_admin:
        raise HTTPException(status_code=400, detail="Cannot add messages to closed tickets")

    # Only admins may leave notes hidden from the customer
    is_internal = bool(payload.get("isInternal")) and principal.is_admin

    msg = SupportMessage(
        ticket_id=t.id,
        user_id=principal.user_id,
        message=text,
        attachments=as_list(payload.get("attachments"), "attachments"),
        is_internal=is_internal,
    )
    db.add(msg)
    apply_message_transition(t, principal.user_id, principal.is_admin, is_internal)
    t.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(msg)

    return {"success": True, "message": msg.to_dict(), "ticketStatus": t.status}
