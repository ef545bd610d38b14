"""
Monitoring collaborators injected into the converter and rule processor.
"""
