"""Static badge catalog.

Each entry pairs a threshold with the aggregate it is compared against
(its category) and the display fields collaborators render.
"""

from pydantic import BaseModel, ConfigDict, Field

from member_authority.shared.schemas.base import BadgeCategory


class BadgeDefinition(BaseModel):
    """One unlockable badge."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    badge_type: str = Field(..., min_length=1, max_length=50)
    name: str
    description: str
    icon_name: str
    badge_color: str
    required_value: int = Field(..., ge=1)
    category: BadgeCategory


DEFAULT_BADGE_CATALOG: list[BadgeDefinition] = [
    BadgeDefinition(
        badge_type="first_task",
        name="First Steps",
        description="Complete your first task",
        icon_name="target",
        badge_color="green",
        required_value=1,
        category=BadgeCategory.TASKS,
    ),
    BadgeDefinition(
        badge_type="task_master",
        name="Task Master",
        description="Complete 10 tasks",
        icon_name="trophy",
        badge_color="gold",
        required_value=10,
        category=BadgeCategory.TASKS,
    ),
    BadgeDefinition(
        badge_type="first_document",
        name="Document Contributor",
        description="Upload your first document",
        icon_name="upload",
        badge_color="blue",
        required_value=1,
        category=BadgeCategory.DOCUMENTS,
    ),
    BadgeDefinition(
        badge_type="knowledge_keeper",
        name="Knowledge Keeper",
        description="Upload 25 documents",
        icon_name="library",
        badge_color="purple",
        required_value=25,
        category=BadgeCategory.DOCUMENTS,
    ),
    BadgeDefinition(
        badge_type="streak_warrior",
        name="Streak Warrior",
        description="Maintain a 7-day login streak",
        icon_name="flame",
        badge_color="orange",
        required_value=7,
        category=BadgeCategory.STREAKS,
    ),
    BadgeDefinition(
        badge_type="review_expert",
        name="Review Expert",
        description="Give 20 peer reviews",
        icon_name="star",
        badge_color="yellow",
        required_value=20,
        category=BadgeCategory.REVIEWS,
    ),
    BadgeDefinition(
        badge_type="team_player",
        name="Team Player",
        description="Join 5 projects",
        icon_name="users",
        badge_color="indigo",
        required_value=5,
        category=BadgeCategory.PROJECTS,
    ),
    BadgeDefinition(
        badge_type="rising_star",
        name="Rising Star",
        description="Reach level 5",
        icon_name="trending-up",
        badge_color="pink",
        required_value=5,
        category=BadgeCategory.LEVELS,
    ),
    BadgeDefinition(
        badge_type="seo_expert",
        name="SEO Expert",
        description="Complete 50 tasks",
        icon_name="crown",
        badge_color="gold",
        required_value=50,
        category=BadgeCategory.TASKS,
    ),
    BadgeDefinition(
        badge_type="authority_figure",
        name="Authority Figure",
        description="Reach a Member Authority score of 500",
        icon_name="shield",
        badge_color="red",
        required_value=500,
        category=BadgeCategory.AUTHORITY,
    ),
]


def catalog_by_type(catalog: list[BadgeDefinition]) -> dict[str, BadgeDefinition]:
    """Index a catalog by badge type."""
    return {badge.badge_type: badge for badge in catalog}
