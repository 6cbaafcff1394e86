"""
Core modules for Quote Engine.

This package contains the pricing engine shared by every layer that shows
or verifies quote and invoice totals: cost resolution, charge allocation,
pricing, tax cascade and quote assembly.
"""
