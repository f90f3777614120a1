from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func, CheckConstraint, Index
from orgassess.extensions import db, login_manager
from orgassess.utils.helpers import utcnow, isoformat

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_ROOT = "root"
ROLE_SUPER_ADMIN = "super_admin"
ROLE_ORG_ADMIN = "org_admin"
ROLE_REVIEWER = "reviewer"
ROLE_EMPLOYEE = "employee"
ROLE_SUBSCRIBER = "subscriber"
ROLE_CHOICES = (ROLE_ROOT, ROLE_SUPER_ADMIN, ROLE_ORG_ADMIN, ROLE_REVIEWER, ROLE_EMPLOYEE, ROLE_SUBSCRIBER)
PRIVILEGED_ROLES = (ROLE_ROOT, ROLE_SUPER_ADMIN)
ADMIN_ROLES = (ROLE_ROOT, ROLE_SUPER_ADMIN, ROLE_ORG_ADMIN)


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(320), nullable=False)  # case-insensitive unique via index
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=False, default="")
    last_name = db.Column(db.String(120), nullable=False, default="")
    role = db.Column(db.String(20), nullable=False, default=ROLE_EMPLOYEE, server_default=ROLE_EMPLOYEE)

    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    department = db.Column(db.String(120), nullable=True)
    job_title = db.Column(db.String(120), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    requires_password_change = db.Column(db.Boolean, nullable=False, default=False)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    organization = db.relationship("Organization", lazy="joined")

    __table_args__ = (
        Index("uq_users_lower_email", func.lower(email), unique=True),
        CheckConstraint(
            "role IN ('root','super_admin','org_admin','reviewer','employee','subscriber')",
            name="ck_users_role_valid",
        ),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            role=self.role,
            organization_id=self.organization_id,
            department=self.department,
            job_title=self.job_title,
            is_active=self.is_active,
            requires_password_change=self.requires_password_change,
            last_login_at=isoformat(self.last_login_at),
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
    if user is None or not user.is_active:
        return None
    return user
