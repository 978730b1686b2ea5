"""Price intelligence engine.

Ingests historical offer documents, reconstructs their line items through
schema-constrained generation, aggregates catalog and extracted prices into a
confidence-scored market index, recommends prices and manages human-approved
pricebook updates.
"""

__version__ = "0.1.0"
