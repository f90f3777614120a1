from sqlalchemy import func
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow, isoformat


class UserProfile(db.Model):
    __tablename__ = "user_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    phone = db.Column(db.String(32), nullable=True)
    position = db.Column(db.String(120), nullable=True)
    department = db.Column(db.String(120), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    hire_date = db.Column(db.Date, nullable=True)
    bio = db.Column(db.Text, nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)

    # {name, relationship, phone}
    emergency_contact = db.Column(db.JSON, nullable=True)
    skills = db.Column(db.JSON, nullable=False, default=list)
    certifications = db.Column(db.JSON, nullable=False, default=list)
    # [{degree, institution, year}]
    education = db.Column(db.JSON, nullable=False, default=list)
    # [{company, position, start_date, end_date, description}]
    work_experience = db.Column(db.JSON, nullable=False, default=list)

    # Denormalized on every save so list views don't recompute
    completion_percentage = db.Column(db.Integer, nullable=False, default=0)
    profile_completed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("profile", uselist=False, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            user_id=self.user_id,
            phone=self.phone,
            position=self.position,
            department=self.department,
            date_of_birth=self.date_of_birth.isoformat() if self.date_of_birth else None,
            hire_date=self.hire_date.isoformat() if self.hire_date else None,
            bio=self.bio,
            avatar_url=self.avatar_url,
            emergency_contact=self.emergency_contact,
            skills=list(self.skills or []),
            certifications=list(self.certifications or []),
            education=list(self.education or []),
            work_experience=list(self.work_experience or []),
            completion_percentage=self.completion_percentage,
            profile_completed=self.profile_completed,
            created_at=isoformat(self.created_at),
            updated_at=isoformat(self.updated_at),
        )
