"""
Profile completion scoring.

Completion is a fixed weighted checklist over the user's account fields
(name, email) and their profile row. Percentages are whole numbers;
the stored `profile_completed` flag uses PROFILE_COMPLETION_THRESHOLD.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional

from flask import current_app
from sqlalchemy.orm import Session

from orgassess.models import User, UserProfile
from orgassess.services import access_control as ac
from orgassess.services.errors import ValidationError, NotFound, PermissionDenied
from orgassess.utils.validators import clean_str, clean_text, normalize_phone, parse_date

# (key, label, weight) in display order
COMPLETION_FIELDS = (
    ("first_name", "First Name", 10),
    ("last_name", "Last Name", 10),
    ("email", "Email", 10),
    ("phone", "Phone", 8),
    ("position", "Position", 8),
    ("department", "Department", 8),
    ("date_of_birth", "Date of Birth", 6),
    ("hire_date", "Hire Date", 6),
    ("bio", "Bio", 5),
    ("emergency_contact", "Emergency Contact", 7),
    ("skills", "Skills", 4),
    ("certifications", "Certifications", 4),
    ("education", "Education", 3),
    ("work_experience", "Work Experience", 3),
)
TOTAL_WEIGHT = sum(w for _, _, w in COMPLETION_FIELDS)

STATUS_COMPLETE = "complete"
STATUS_PARTIAL = "partial"
STATUS_INCOMPLETE = "incomplete"

_LIST_FIELDS = ("skills", "certifications", "education", "work_experience")
_EMERGENCY_KEYS = ("name", "relationship", "phone")
DEFAULT_COMPLETION_THRESHOLD = 80


@dataclass
class Completion:
    percentage: int
    status: str
    completed_weight: int
    total_weight: int = TOTAL_WEIGHT
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "percentage": self.percentage,
            "status": self.status,
            "completed_weight": self.completed_weight,
            "total_weight": self.total_weight,
            "missing_fields": list(self.missing_fields),
        }


def is_field_complete(key: str, value: Any) -> bool:
    if value is None or value == "":
        return False
    if key == "emergency_contact":
        if not isinstance(value, dict):
            return False
        return all(value.get(k) for k in _EMERGENCY_KEYS)
    if key in _LIST_FIELDS:
        return isinstance(value, (list, tuple)) and len(value) > 0
    if isinstance(value, str):
        return bool(value.strip())
    return True


def completion_status(percentage: int) -> str:
    if percentage >= 80:
        return STATUS_COMPLETE
    if percentage >= 50:
        return STATUS_PARTIAL
    return STATUS_INCOMPLETE


def calculate_completion(data: dict) -> Completion:
    completed = 0
    missing = []
    for key, label, weight in COMPLETION_FIELDS:
        if is_field_complete(key, data.get(key)):
            completed += weight
        else:
            missing.append(label)
    percentage = round(completed / TOTAL_WEIGHT * 100)
    return Completion(
        percentage=percentage,
        status=completion_status(percentage),
        completed_weight=completed,
        missing_fields=missing,
    )


def snapshot(user: User, profile: Optional[UserProfile]) -> dict:
    """Merge account and profile fields into the shape the checklist scores."""
    data = {"first_name": user.first_name, "last_name": user.last_name, "email": user.email}
    if profile is not None:
        for key, _, _ in COMPLETION_FIELDS[3:]:
            data[key] = getattr(profile, key)
    return data


def completion_threshold() -> int:
    return int(current_app.config.get("PROFILE_COMPLETION_THRESHOLD", DEFAULT_COMPLETION_THRESHOLD))


def refresh_completion(user: User, profile: UserProfile) -> Completion:
    result = calculate_completion(snapshot(user, profile))
    profile.completion_percentage = result.percentage
    profile.profile_completed = result.percentage >= completion_threshold()
    return result


def get_or_create_profile(session: Session, user: User) -> UserProfile:
    profile = session.query(UserProfile).filter_by(user_id=user.id).one_or_none()
    if profile is None:
        profile = UserProfile(user_id=user.id, skills=[], certifications=[], education=[], work_experience=[])
        session.add(profile)
        session.flush()
        refresh_completion(user, profile)
    return profile


def _load_target(session: Session, actor, user_id: int, context: str) -> User:
    user = session.get(User, user_id)
    if user is None or not ac.validate_user_access(actor, user, context):
        raise NotFound("User not found.")
    return user


def get_profile(session: Session, actor, user_id: int):
    user = _load_target(session, actor, user_id, "profile.get")
    profile = get_or_create_profile(session, user)
    return user, profile, refresh_completion(user, profile)


# --- input coercion ---

def _string_list(value, label: str) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{label} must be a list.")
    out = []
    for item in value:
        s = clean_str(item, 120)
        if s and s not in out:
            out.append(s)
    return out


def _object_list(value, label: str, keys: tuple) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{label} must be a list.")
    out = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError(f"Each {label.lower()} entry must be an object.")
        entry = {k: clean_text(item.get(k)) for k in keys}
        if any(entry.values()):
            out.append(entry)
    return out


def _emergency_contact(value) -> Optional[dict]:
    if value in (None, "", {}):
        return None
    if not isinstance(value, dict):
        raise ValidationError("Emergency contact must be an object.")
    contact = {k: clean_str(value.get(k), 120) for k in _EMERGENCY_KEYS}
    if contact["phone"]:
        phone = normalize_phone(contact["phone"])
        if not phone:
            raise ValidationError("Emergency contact phone is not valid.")
        contact["phone"] = phone
    return contact


def _date(value, label: str):
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"{label} must be a date (YYYY-MM-DD).")
    return parsed


def update_profile(session: Session, actor, user_id: int, data: dict):
    user = _load_target(session, actor, user_id, "profile.update")
    if not ac.can_modify_user(actor, user, "profile.update"):
        raise PermissionDenied("You cannot edit the profile of a user with this role.")
    profile = get_or_create_profile(session, user)

    for key in ("first_name", "last_name"):
        if key in data:
            value = clean_str(data.get(key), 120)
            if not value:
                raise ValidationError("First and last name cannot be blank.")
            setattr(user, key, value)

    if "phone" in data:
        raw = data.get("phone")
        phone = normalize_phone(raw)
        if raw and not phone:
            raise ValidationError("Phone number is not valid.")
        profile.phone = phone
    for key in ("position", "department"):
        if key in data:
            setattr(profile, key, clean_str(data.get(key), 120))
    if "bio" in data:
        profile.bio = clean_text(data.get("bio"))
    if "avatar_url" in data:
        profile.avatar_url = clean_str(data.get("avatar_url"), 500)
    if "date_of_birth" in data:
        profile.date_of_birth = _date(data.get("date_of_birth"), "Date of birth")
    if "hire_date" in data:
        profile.hire_date = _date(data.get("hire_date"), "Hire date")
    if "emergency_contact" in data:
        profile.emergency_contact = _emergency_contact(data.get("emergency_contact"))
    if "skills" in data:
        profile.skills = _string_list(data.get("skills"), "Skills")
    if "certifications" in data:
        profile.certifications = _string_list(data.get("certifications"), "Certifications")
    if "education" in data:
        profile.education = _object_list(data.get("education"), "Education", ("degree", "institution", "year"))
    if "work_experience" in data:
        profile.work_experience = _object_list(
            data.get("work_experience"),
            "Work experience",
            ("company", "position", "start_date", "end_date", "description"),
        )

    result = refresh_completion(user, profile)
    session.flush()
    return user, profile, result
