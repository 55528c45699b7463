"""Default platform content: accounts (only with configured passwords), a doctor profile, tips, settings."""
import logging

from dawaak.core.config import Settings
from dawaak.store import RecordStore

from .accounts import with_password_hash

logger = logging.getLogger(__name__)

ADMIN_USER = {
    "username": "admin",
    "full_name": "مدير النظام",
    "email": "admin@dawaakmanzaly.com",
    "phone": "+966501234567",
    "age": 35,
    "gender": "male",
    "user_type": "admin",
    "is_active": True,
    "last_login": None,
}

DOCTOR_USER = {
    "username": "dr.afrah",
    "full_name": "د. أفراح محمد",
    "email": "dr.afrah@dawaakmanzaly.com",
    "phone": "+967771234567",
    "age": 32,
    "gender": "female",
    "user_type": "doctor",
    "is_active": True,
    "last_login": None,
}

DOCTOR_PROFILE = {
    "name": "د. أفراح محمد",
    "specialty": "طب عام",
    "country": "اليمن",
    "experience_years": 8,
    "bio": "طبيبة عامة متخصصة في الطب الباطني والأمراض الشائعة مع خبرة 8 سنوات في التشخيص والعلاج",
    "is_available": True,
    "consultation_price": 100,
    "rating": 4.8,
    "consultations_count": 0,
}

MEDICAL_TIPS = (
    {
        "title": "أهمية غسل اليدين",
        "content": "غسل اليدين بالماء والصابون لمدة 20 ثانية من أهم طرق الوقاية من الأمراض المعدية.",
        "category": "وقاية",
        "is_published": True,
        "views": 0,
        "likes": 0,
    },
    {
        "title": "نصائح للنظام الغذائي المتوازن",
        "content": "تناول الخضروات والفواكه يومياً، واشرب 8 أكواب من الماء، وقلل من السكريات والأملاح.",
        "category": "تغذية",
        "is_published": True,
        "views": 0,
        "likes": 0,
    },
)


def _ensure_user(store: RecordStore, template: dict, password: str) -> dict | None:
    existing = store.find_one("users", {"username": template["username"]})
    if existing:
        return existing
    if not password:
        logger.warning(
            "Default account %r not created: no password configured", template["username"]
        )
        return None
    logger.info("Creating default account %r", template["username"])
    return store.insert("users", with_password_hash({**template, "password": password}))


def seed_defaults(store: RecordStore, settings: Settings) -> None:
    """Idempotent: only fills in what is missing."""
    _ensure_user(store, ADMIN_USER, settings.seed_admin_password)
    doctor_user = _ensure_user(store, DOCTOR_USER, settings.seed_doctor_password)

    profile = store.find_one("doctors", {"name": DOCTOR_PROFILE["name"]})
    if not profile:
        store.insert("doctors", {**DOCTOR_PROFILE, "user_id": doctor_user["id"] if doctor_user else None})
    elif doctor_user and not profile.get("user_id"):
        store.update("doctors", profile["id"], {"user_id": doctor_user["id"]})
        logger.info("Linked doctor profile %s with account %s", profile["id"], doctor_user["id"])

    if store.find("medical_tips", limit=1).total == 0:
        author_id = doctor_user["id"] if doctor_user else None
        for tip in MEDICAL_TIPS:
            store.insert("medical_tips", {**tip, "author_id": author_id})

    if not store.find_one("settings", {"key": "platform_name"}):
        store.insert(
            "settings",
            {
                "key": "platform_name",
                "value": settings.platform_name,
                "description": "اسم المنصة الطبية",
                "updated_by": "system",
            },
        )
