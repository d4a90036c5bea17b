"""
Settlement Kernel

Freight settlement bundle aggregation and adjustment engine:
- Waiting pool derived from live bundle membership
- Sales (shipper) and purchase (carrier/driver) bundles with frozen snapshots
- Bundle-level and item-level discount/surcharge adjustments
- Decimal, tax-aware totals recomputed on every mutation
- Status lifecycle with immutability after payment or cancellation
"""

__version__ = "0.1.0"
