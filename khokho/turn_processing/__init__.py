"""Operation gating for a live match.

This package centralizes the phase/clock checks every operator operation goes through,
so rejections read the same whether they come from the API, a runner, or a test.
"""
