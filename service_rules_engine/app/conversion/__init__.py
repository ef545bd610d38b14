"""
Conversion of engine rules into host platform rules and their hand-off.
"""
