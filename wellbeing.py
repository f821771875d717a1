"""Daily mood tracking and journals."""
import calendar
from datetime import MAXYEAR, MINYEAR, date
from typing import Any, Dict, List, Optional, get_args

from pydantic import ValidationError as SchemaError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from config import MOOD_HISTORY_DAYS
from database import create_document, now_utc, oid
from errors import ValidationError
from schemas import Journal as JournalSchema, MoodValue, Moodentry as MoodentrySchema

MOODS = get_args(MoodValue)
JOURNAL_VISIBILITY = ("private", "circle", "public")


def today() -> str:
    return now_utc().date().isoformat()


def public_mood(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {"day": entry.get("day"), "mood": entry.get("mood"), "updated_at": entry.get("updated_at")}


def set_today_mood(db: Database, user_id: str, mood: str, day: Optional[str] = None) -> Dict[str, Any]:
    try:
        mood_entry = MoodentrySchema(user_id=str(user_id), day=day or today(), mood=mood)
    except SchemaError:
        raise ValidationError(f"mood must be one of {', '.join(MOODS)}")
    stamp = now_utc()
    entry = db["moodentry"].find_one_and_update(
        {"user_id": mood_entry.user_id, "day": mood_entry.day},
        {"$set": {"mood": mood_entry.mood, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return public_mood(entry)


def get_today_mood(db: Database, user_id: str) -> Dict[str, Any]:
    entry = db["moodentry"].find_one({"user_id": str(user_id), "day": today()})
    if not entry:
        return {"day": today(), "mood": "not_added", "updated_at": None}
    return public_mood(entry)


def recent_moods(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["moodentry"].find({"user_id": str(user_id)}).sort("day", DESCENDING).limit(MOOD_HISTORY_DAYS)
    return [public_mood(e) for e in cursor]


def month_history(db: Database, user_id: str, year: int, month: int) -> Dict[int, str]:
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(f"year must be between {MINYEAR} and {MAXYEAR}")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    last_day = calendar.monthrange(year, month)[1]
    start = date(year, month, 1).isoformat()
    end = date(year, month, last_day).isoformat()
    entries = db["moodentry"].find({"user_id": str(user_id), "day": {"$gte": start, "$lte": end}})
    return {int(e["day"][8:10]): e["mood"] for e in entries}


def public_journal(j: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(j["_id"]),
        "title": j.get("title"),
        "body": j.get("body"),
        "visibility": j.get("visibility", "private"),
        "circles": j.get("circles", []),
        "created_at": j.get("created_at"),
    }


def create_journal(db: Database, user_id: str, title: str, body: Optional[str] = None, visibility: str = "private",
                   circles: Optional[List[str]] = None) -> Dict[str, Any]:
    if not (title or "").strip():
        raise ValidationError("Title is required")
    if visibility not in JOURNAL_VISIBILITY:
        raise ValidationError("Invalid journal visibility")
    journal = JournalSchema(user_id=str(user_id), title=title.strip(), body=body, visibility=visibility,
                            circles=circles or [])
    jid = create_document("journal", journal, database=db)
    return public_journal(db["journal"].find_one({"_id": oid(jid)}))


def list_journals(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["journal"].find({"user_id": str(user_id)}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    return [public_journal(j) for j in cursor]
