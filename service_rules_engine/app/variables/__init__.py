"""
Variable templates: models, built-in functions and the resolver.
"""
