"""
finguard - Answer Reliability Layer

Sits between the chat assistant's generation backends and the user.
Every answer passes through two gates before anyone sees it.

DESIGN PRINCIPLES:
1. Backends are guarded → failing dependencies fail fast
2. Generated text is untrusted → every figure is checked against the FactPack
3. No silent delivery of a doubtful answer
4. Every step must be auditable
5. Registries are injected, never global
"""

__version__ = "1.0.0"
__author__ = "finguard Team"
