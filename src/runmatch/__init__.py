"""
runmatch - Runner identity resolution for race results

Links race results imported from timing companies and race organizers to
canonical runner identities, queueing uncertain matches for human review.

Main components:
- runners: Normalization, provider mapping, identity service, review queue
- matching: Candidate search, similarity scoring, match decision policy
- db: SQLAlchemy models and sessions
- services: Batch import of raw results
- web: FastAPI endpoints for ingestion and review
- tasks: Identity-key locks
"""

__version__ = "1.0.0"
