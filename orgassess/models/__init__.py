from .organization import Organization
from .user import User
from .profile import UserProfile
from .department import Department
from .assessment import Competency, Assessment, AssessmentSection, AssessmentQuestion, QuestionOption
from .assignment import AssessmentAssignment, AssessmentResponse, AssessmentResult
from .support_ticket import SupportTicket, TicketMessage, TicketAttachment
from .email_log import EmailLog

__all__ = [
    "Organization",
    "User",
    "UserProfile",
    "Department",
    "Competency",
    "Assessment",
    "AssessmentSection",
    "AssessmentQuestion",
    "QuestionOption",
    "AssessmentAssignment",
    "AssessmentResponse",
    "AssessmentResult",
    "SupportTicket",
    "TicketMessage",
    "TicketAttachment",
    "EmailLog",
]
