"""
shelfreview: an interactive reviewer for automatically renamed files.

This package provides:
- A tokenized, diacritic-insensitive comparison of a file's current name with
  the name recorded in its sidecar metadata before it was renamed.
- A one-file-at-a-time review loop where the operator moves, restores, renames
  or re-fetches metadata for each file, without ever overwriting anything.
"""
