"""
Bank statement intake: Upload → Text Extraction → Parsing → Dedupe → Persist

A deterministic, testable pipeline that turns uploaded bank statements (PDF or
image) into deduplicated transaction records, with a per-statement processing
state that drives retries and manual review.
"""

__version__ = "0.1.0"
