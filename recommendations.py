"""
Circle recommendations.

Public circles the user has not joined are scored against the user's
interests. Per (tag, interest) pair: 3 for an exact match, 2 when one
contains the other, 1 when they share a word. Per interest: +1 when the
title contains it, +0.5 when the description does.
"""
import logging
from typing import Any, Dict, Iterable, List

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from config import RECOMMENDATION_LIMIT, RECOMMENDATION_MIN_SCORED
from users import find_user

logger = logging.getLogger(__name__)

EXACT_MATCH = 3
PARTIAL_MATCH = 2
WORD_MATCH = 1
TITLE_MATCH = 1
DESCRIPTION_MATCH = 0.5


def normalize(values: Iterable[str]) -> List[str]:
    return [(v or "").lower().strip() for v in values or []]


def tag_score(tag: str, interest: str) -> int:
    if tag == interest:
        return EXACT_MATCH
    if tag in interest or interest in tag:
        return PARTIAL_MATCH
    if set(tag.split()) & set(interest.split()):
        return WORD_MATCH
    return 0


def score_circle(circle: Dict[str, Any], interests: List[str]) -> float:
    """Score one circle; `interests` must already be normalized."""
    score: float = 0
    for tag in normalize(circle.get("tags")):
        for interest in interests:
            score += tag_score(tag, interest)
    title = (circle.get("title") or "").lower()
    description = (circle.get("description") or "").lower()
    for interest in interests:
        if interest in title:
            score += TITLE_MATCH
        if interest in description:
            score += DESCRIPTION_MATCH
    return score


def rank_circles(circles: List[Dict[str, Any]], interests: List[str], limit: int = RECOMMENDATION_LIMIT) -> List[Dict[str, Any]]:
    wanted = normalize(interests)
    scored = [(score_circle(c, wanted), c) for c in circles]
    # sorted() is stable, so equal scores keep retrieval order
    ranked = sorted((pair for pair in scored if pair[0] > 0), key=lambda pair: pair[0], reverse=True)
    return [c for _, c in ranked[:limit]]


def eligible_filter(user_id: str, exclude_ids=None) -> Dict[str, Any]:
    query: Dict[str, Any] = {"visibility": "public", "members": {"$nin": [str(user_id)]}}
    if exclude_ids:
        query["_id"] = {"$nin": list(exclude_ids)}
    return query


def newest_eligible(db: Database, user_id: str, limit: int, exclude_ids=None) -> List[Dict[str, Any]]:
    if limit <= 0:
        return []
    cursor = db["circle"].find(eligible_filter(user_id, exclude_ids))
    return list(cursor.sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit))


def recommend_circles(db: Database, user_id: str) -> List[Dict[str, Any]]:
    user = find_user(db, user_id)
    if not user:
        return []
    interests = [i for i in user.get("interests") or [] if (i or "").strip()]
    if not interests:
        return newest_eligible(db, user_id, RECOMMENDATION_LIMIT)

    candidates = list(db["circle"].find(eligible_filter(user_id)).sort([("created_at", ASCENDING), ("_id", ASCENDING)]))
    if not candidates:
        return []

    picked = rank_circles(candidates, interests)
    if len(picked) < RECOMMENDATION_MIN_SCORED:
        seen = [c["_id"] for c in picked]
        picked += newest_eligible(db, user_id, RECOMMENDATION_LIMIT - len(picked), exclude_ids=seen)
    logger.debug("recommended %d circles for %s", len(picked), user_id)
    return picked
