"""Preview summaries for the Quick Launch review screen."""

from collections import Counter
from typing import Any, Mapping

SAMPLE_SIZE = 10


def compute_assertion_summary(fields: Mapping[str, Any], sample_size: int = SAMPLE_SIZE) -> dict[str, Any]:
    """
    Summarize extracted assertions for human review.

    Returns:
        {
          "assertionCount": 42,
          "categoryBreakdown": {"fact": 30, "definition": 12},
          "chapterCount": 3,
          "sampleAssertions": [{"assertion": ..., "category": ..., "chapter": ...}, ...]
        }
    """
    assertions = fields.get("assertions") or []
    categories = Counter(a.get("category") or "uncategorized" for a in assertions)
    chapters = {a.get("chapter") for a in assertions if a.get("chapter")}

    return {
        "assertionCount": len(assertions),
        "categoryBreakdown": dict(categories),
        "chapterCount": len(chapters),
        "sampleAssertions": [
            {
                "assertion": a.get("assertion"),
                "category": a.get("category"),
                "chapter": a.get("chapter"),
            }
            for a in assertions[:sample_size]
        ],
    }
