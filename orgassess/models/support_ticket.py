from sqlalchemy import func, CheckConstraint, Index
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow, isoformat

TICKET_OPEN = "open"
TICKET_IN_PROGRESS = "in_progress"
TICKET_RESOLVED = "resolved"
TICKET_CLOSED = "closed"
TICKET_ESCALATED = "escalated"
TICKET_STATUSES = (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_RESOLVED, TICKET_CLOSED, TICKET_ESCALATED)

TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_CATEGORIES = ("technical", "assessment", "user_management", "billing", "general", "other")


class SupportTicket(db.Model):
    __tablename__ = "support_tickets"

    id = db.Column(db.Integer, primary_key=True)
    staff_member_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    subject = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(20), nullable=False, default="medium", server_default="medium")
    category = db.Column(db.String(32), nullable=False, default="general", server_default="general")
    status = db.Column(db.String(20), nullable=False, default=TICKET_OPEN, server_default=TICKET_OPEN, index=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    satisfaction_rating = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    staff_member = db.relationship("User", foreign_keys=[staff_member_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    messages = db.relationship(
        "TicketMessage",
        back_populates="ticket",
        order_by="TicketMessage.created_at",
        cascade="all, delete-orphan",
    )
    attachments = db.relationship("TicketAttachment", back_populates="ticket", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "status IN ('open','in_progress','resolved','closed','escalated')",
            name="ck_support_tickets_status_valid",
        ),
        CheckConstraint("priority IN ('low','medium','high','urgent')", name="ck_support_tickets_priority_valid"),
        CheckConstraint(
            "satisfaction_rating IS NULL OR (satisfaction_rating BETWEEN 1 AND 5)",
            name="ck_support_tickets_rating_range",
        ),
        Index("ix_support_tickets_org_created_at", organization_id, created_at),
    )

    @property
    def ticket_number(self) -> str:
        return f"TKT-{self.id:06d}" if self.id else ""

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            ticket_number=self.ticket_number,
            staff_member_id=self.staff_member_id,
            organization_id=self.organization_id,
            subject=self.subject,
            description=self.description,
            priority=self.priority,
            category=self.category,
            status=self.status,
            assigned_to_id=self.assigned_to_id,
            assigned_at=isoformat(self.assigned_at),
            resolved_at=isoformat(self.resolved_at),
            closed_at=isoformat(self.closed_at),
            satisfaction_rating=self.satisfaction_rating,
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )

    def __repr__(self) -> str:
        return f"<SupportTicket id={self.id} status={self.status!r} priority={self.priority!r}>"


class TicketMessage(db.Model):
    __tablename__ = "ticket_messages"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message_text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    ticket = db.relationship("SupportTicket", back_populates="messages")
    sender = db.relationship("User")
    attachments = db.relationship("TicketAttachment", back_populates="message")

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            ticket_id=self.ticket_id,
            sender_id=self.sender_id,
            sender_name=self.sender.full_name if self.sender else None,
            message_text=self.message_text,
            created_at=isoformat(self.created_at),
            attachments=[a.to_dict() for a in self.attachments],
        )


class TicketAttachment(db.Model):
    __tablename__ = "ticket_attachments"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = db.Column(db.Integer, db.ForeignKey("ticket_messages.id", ondelete="SET NULL"), nullable=True, index=True)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    file_name = db.Column(db.String(255), nullable=False)
    # relative to UPLOAD_FOLDER
    storage_path = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    mime_type = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    ticket = db.relationship("SupportTicket", back_populates="attachments")
    message = db.relationship("TicketMessage", back_populates="attachments")

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            ticket_id=self.ticket_id,
            message_id=self.message_id,
            file_name=self.file_name,
            file_size=self.file_size,
            mime_type=self.mime_type,
            created_at=isoformat(self.created_at),
        )
