"""Core mathematics and configuration for the line-intelligence pipeline.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``    : American-odds conversion and implied probability
- ``outcomes``     : spread / total / bet results from final scores
- ``sport_config`` : per-sport constants (feed keys, exhibition markers)

Nothing in this package imports from ``lineintel.services`` or
``lineintel.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
