"""
Runner identity management module.

Race results name their runners inconsistently ("Robert Smith",
"SMITH, Bob", "R. Smith"). This module turns those raw results into links to
canonical runner records.

Key components:
- identity.RunnerIdentityService: Resolves raw results (auto-match, review, new runner)
- review.ReviewQueueManager: Lists and resolves entries the engine wasn't sure about
- normalize: Name, location, gender and age normalization
- providers: Mapping of provider payloads onto RawResultRecord

The services are imported from their modules directly; the matching engine
imports this package's normalization helpers.
"""

from runmatch.runners.normalize import NormalizedIdentity, compare_names, normalize, normalize_name
from runmatch.runners.snapshot import RawResultRecord

__all__ = [
    "RawResultRecord",
    "NormalizedIdentity",
    "normalize",
    "normalize_name",
    "compare_names",
]
