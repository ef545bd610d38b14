"""
Rule models, condition evaluation and profile selection.
"""
