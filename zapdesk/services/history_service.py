"""
History merger.

Rebuilds one continuous, timestamp-ordered log per user from the archived
segments and the live session. Read-only over the registry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from zapdesk.models import Message
from zapdesk.models.session import to_iso
from zapdesk.repositories.session_registry import SessionRegistry


@dataclass
class MergedHistory:
    user_id: str
    user_name: Optional[str]
    attendant_id: Optional[str]
    pool: Optional[str]
    messages: List[Message] = field(default_factory=list)
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "attendantId": self.attendant_id,
            "pool": self.pool,
            "resolvedAt": to_iso(self.resolved_at),
            "messageLog": [m.to_dict() for m in self.messages],
        }


class HistoryService:
    """Merged per-user history and archive summaries."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def get_full_log(self, user_id: str) -> Optional[MergedHistory]:
        """
        Merge archived segments with the live session.

        Live session fields win when the user is live; otherwise the most
        recent archived segment supplies them and attendant_id is empty.
        Returns None for a user with no history at all.
        """
        segments = self.registry.archived_segments(user_id)
        live = self.registry.find_live(user_id)
        if live is None and not segments:
            return None

        messages: List[Message] = []
        for segment in segments:
            messages.extend(segment.message_log)
        if live is not None:
            messages.extend(live.message_log)
        # Stable sort keeps segment order for equal timestamps
        messages.sort(key=lambda m: m.timestamp)

        if live is not None:
            return MergedHistory(
                user_id=user_id,
                user_name=live.user_name,
                attendant_id=live.attendant_id,
                pool=live.pool,
                messages=messages,
            )

        latest = segments[-1]
        return MergedHistory(
            user_id=user_id,
            user_name=latest.user_name,
            attendant_id=None,
            pool=None,
            messages=messages,
            resolved_at=latest.resolved_at,
        )

    def archived_summaries(self) -> List[Dict[str, Any]]:
        """One entry per archived user, most recently resolved first."""
        summaries = []
        for user_id in self.registry.archived_user_ids():
            segments = self.registry.archived_segments(user_id)
            if not segments:
                continue
            latest = segments[-1]
            summaries.append({
                "userId": user_id,
                "userName": latest.user_name,
                "resolvedAt": to_iso(latest.resolved_at),
                "resolvedBy": latest.resolved_by,
                "segments": len(segments),
            })
        summaries.sort(key=lambda s: s["resolvedAt"] or "", reverse=True)
        return summaries
