"""
arena_evo: per-agent policy networks, GAE training and population evolution
for a multi-agent arena driven through a narrow environment contract.
"""
__version__ = "0.1.0"
