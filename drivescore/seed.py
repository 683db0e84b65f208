"""Seed the default score weights.

Usage: python -m drivescore.seed
"""

import logging
from typing import Optional
from sqlalchemy.orm import Session
from .db import init_db, session_scope
from .persistence import commit, upsert_score_weights
from .scoring import DEFAULT_WEIGHTS, ScoreWeights

logger = logging.getLogger(__name__)


def seed_weights(db: Session, weights: Optional[ScoreWeights] = None) -> ScoreWeights:
    """Store a weight set, replacing any stored under the same version."""
    weights = weights or DEFAULT_WEIGHTS
    upsert_score_weights(db, weights)
    commit(db, f"seed score weights {weights.version}")
    logger.info("Seeded score weights %s", weights.version)
    return weights


def main():
    init_db()
    with session_scope() as db:
        seed_weights(db)


if __name__ == "__main__":
    main()
