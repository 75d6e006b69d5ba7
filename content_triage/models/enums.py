"""
Python enums for analysis jobs and items.
Values are stored verbatim in the database and exposed on the API.
"""

from enum import Enum


class JobStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Phase(str, Enum):
    IDENTIFICATION = "identification"
    ENRICHMENT = "enrichment"


class DetectionType(str, Enum):
    # Identification phase
    WIKI_LINK_RESOLVED = "wiki_link_resolved"
    WIKI_LINK_UNRESOLVED = "wiki_link_unresolved"
    UNTAGGED_MENTION = "untagged_mention"
    POTENTIAL_ALIAS = "potential_alias"
    MISSPELLING = "misspelling"
    # Enrichment phase
    DESCRIPTION_UPDATE = "description_update"
    LOG_ENTRY = "log_entry"
    RELATIONSHIP_SUGGESTION = "relationship_suggestion"
    NEW_ENTITY_SUGGESTION = "new_entity_suggestion"

    @property
    def phase(self) -> Phase:
        if self in IDENTIFICATION_TYPES:
            return Phase.IDENTIFICATION
        return Phase.ENRICHMENT


IDENTIFICATION_TYPES = frozenset({
    DetectionType.WIKI_LINK_RESOLVED,
    DetectionType.WIKI_LINK_UNRESOLVED,
    DetectionType.UNTAGGED_MENTION,
    DetectionType.POTENTIAL_ALIAS,
    DetectionType.MISSPELLING,
})

# Lower value wins when two detections compete for the same span
DETECTION_PRIORITY = {
    DetectionType.WIKI_LINK_RESOLVED: 0,
    DetectionType.WIKI_LINK_UNRESOLVED: 1,
    DetectionType.UNTAGGED_MENTION: 2,
    DetectionType.POTENTIAL_ALIAS: 3,
    DetectionType.MISSPELLING: 4,
}


class Resolution(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    NEW_ENTITY = "new_entity"
    DISMISSED = "dismissed"


class EnrichmentStatus(str, Enum):
    """Outcome reported by trigger/cancel enrichment calls."""
    ENRICHING = "enriching"
    ALREADY_RUNNING = "already_running"
    CANCELLED = "cancelled"
    NOT_RUNNING = "not_running"


class AgentName(str, Enum):
    DETECTOR = "detector"
    ENRICHMENT = "enrichment"


class EntityType(str, Enum):
    NPC = "npc"
    LOCATION = "location"
    ITEM = "item"
    FACTION = "faction"
    CLUE = "clue"
    CREATURE = "creature"
    ORGANIZATION = "organization"
    EVENT = "event"
    DOCUMENT = "document"
    OTHER = "other"
