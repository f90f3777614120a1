from sqlalchemy import func, Index
from orgassess.extensions import db
from orgassess.utils.helpers import utcnow


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    parent = db.relationship("Department", remote_side=[id], backref="children")

    __table_args__ = (
        Index("uq_departments_org_lower_name", organization_id, func.lower(name), unique=True),
    )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            organization_id=self.organization_id,
            parent_department_id=self.parent_department_id,
            name=self.name,
            description=self.description,
            created_by_id=self.created_by_id,
        )
