"""Application services.

Thin async functions over BackendClientBase for the features around the
feeds: posts, friends, suggestions, reports, moderation, announcements,
tutorials, badges, account housekeeping and the active-player count.
Each takes the backend (and storage, where it uploads) as its first
arguments and the Session whose user it acts for.
"""
