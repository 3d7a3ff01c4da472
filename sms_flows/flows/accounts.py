# sms_flows/flows/accounts.py
from sqlalchemy.orm import Session

from sms_flows.db.models import OptOut, User
from sms_flows.delivery.http_sender import normalize_phone


def find_user_id(session: Session, phone: str) -> str | None:
    """Linked marketplace account id for ``phone``, if one exists."""
    user = session.query(User.id).filter(User.phone == phone).first()
    return user.id if user else None


def phone_variants(phone: str) -> set[str]:
    """Stored spellings of ``phone``: as given, E.164, and bare national digits."""
    normalized = normalize_phone(phone)
    variants = {phone, normalized}
    if normalized.startswith("+1") and len(normalized) > 2:
        national = normalized[2:]
        variants.update({national, f"1{national}"})
    return variants


def is_opted_out(session: Session, phone: str) -> bool:
    # Opt-outs arrive from the carrier in E.164 while signups keep whatever the user typed
    match = session.query(OptOut.phone).filter(OptOut.phone.in_(phone_variants(phone))).first()
    return match is not None
