"""Search ranking and result fusion components.

Contents
- ``normalization``: per-strategy score normalization onto [0, 1]
- ``fusion``: candidate merging and weighted score fusion
- ``assembly``: ordering, tie-breaking and truncation
"""
