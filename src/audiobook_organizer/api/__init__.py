"""External metadata providers and candidate ranking.

Submodules:
    base         -- MetadataProvider protocol and shared response helpers
    google_books -- Google Books volumes search (optional API key)
    open_library -- Open Library search (no key)
    audible      -- Audible catalog search
    search       -- Fuzzy ranking of candidates for manual search
"""
