"""Member Authority reputation and progression engine.

Turns collaborator activity into experience levels, a time-decaying
E-E-A-T authority score and achievement badges, and runs the grace
period workflow for disputed negative reviews.

Modules:
    - ledger: Append-only activity ledger
    - progression: XP, levels, login streaks and leaderboards
    - authority: Sub-scores, Member Authority and peer reviews
    - decay: Inactivity decay of Trust and Authority
    - achievements: Badge catalog and idempotent evaluator
    - appeals: Grace period requests and their state machine
    - infrastructure: Database models, per-user locks, scheduler
"""

from member_authority.config import EngineSettings, get_engine_settings
from member_authority.engine import MemberAuthorityEngine
from member_authority.runtime import EngineRuntime

__version__ = "0.1.0"
__all__ = ["EngineSettings", "get_engine_settings", "MemberAuthorityEngine", "EngineRuntime"]
