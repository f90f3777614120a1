from sqlalchemy import func, CheckConstraint, Index
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow, isoformat

ORG_STATUS_ACTIVE = "active"
ORG_STATUS_INACTIVE = "inactive"
ORG_STATUS_SUSPENDED = "suspended"
ORG_STATUSES = (ORG_STATUS_ACTIVE, ORG_STATUS_INACTIVE, ORG_STATUS_SUSPENDED)

# Per-org switches a super admin can hand to org admins
ORG_ADMIN_PERMISSIONS = (
    "create_assessments",
    "manage_users",
    "view_results",
    "assign_assessments",
    "manage_relationships",
)
DEFAULT_ORG_ADMIN_PERMISSIONS = ["manage_users", "assign_assessments", "manage_relationships"]


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)  # case-insensitive unique via index
    status = db.Column(db.String(20), nullable=False, default=ORG_STATUS_ACTIVE, server_default=ORG_STATUS_ACTIVE)

    contact_email = db.Column(db.String(320), nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    industry = db.Column(db.String(120), nullable=True)
    size = db.Column(db.String(40), nullable=True)
    logo_url = db.Column(db.String(500), nullable=True)

    org_admin_permissions = db.Column(db.JSON, nullable=False, default=lambda: list(DEFAULT_ORG_ADMIN_PERMISSIONS))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        Index("uq_organizations_lower_name", func.lower(name), unique=True),
        CheckConstraint(
            "status IN ('active','inactive','suspended')",
            name="ck_organizations_status_valid",
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ORG_STATUS_ACTIVE

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            name=self.name,
            status=self.status,
            contact_email=self.contact_email,
            contact_phone=self.contact_phone,
            address=self.address,
            industry=self.industry,
            size=self.size,
            logo_url=self.logo_url,
            org_admin_permissions=list(self.org_admin_permissions or []),
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r} status={self.status!r}>"
