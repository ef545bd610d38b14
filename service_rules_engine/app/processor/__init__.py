"""
Request analysis for introspection tooling.
"""
