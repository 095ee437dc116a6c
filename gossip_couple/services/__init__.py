"""
Services Package

Storage backends plus the write-side services: mutations, account
settings, the goal contribution saga, calendar, payments, invites,
avatars and portfolio price refresh. Import from the submodules directly.
"""
