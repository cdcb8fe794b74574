"""Audiobook Organizer -- scan, group, and resolve metadata for audiobook collections.

Core modules:
    config   -- Organizer configuration via pydantic-settings (.env + env vars)
    cli      -- Click command group; CLI flags passed as kwargs to OrganizerConfig
    app      -- Organizer facade wiring cache, providers, matcher and library
    parser   -- Filename/path heuristics (author, title, series, part numbers)
    scanner  -- Directory walk and grouping into single-file and multi-file works
    matcher  -- Cache-first metadata resolution over an ordered provider chain
    cache    -- Hash-keyed metadata cache with debounced JSON persistence
    library  -- Library model: works, metadata merges, user data, partitions
    storage  -- Atomic JSON snapshot of the library
    events   -- Publish/subscribe for library change notifications
    ffprobe  -- Embedded tag and stream inspection via ffprobe subprocess
    sanitize -- Filename sanitization and stable file ids

Subpackages:
    api -- Metadata providers (Google Books, Open Library, Audible) and ranking
    ops -- File operations (pattern rename, move)
"""
